"""Badge engine administration.

Usage:
    python -m tools.badge_admin validate path/to/catalog.json
    python -m tools.badge_admin evaluate <user_id>
    python -m tools.badge_admin progress <user_id>
    python -m tools.badge_admin award <user_id> <badge_key>
    python -m tools.badge_admin revoke <user_id> <badge_key>
    python -m tools.badge_admin sweep
"""

import argparse
import asyncio
import sys

sys.path.insert(0, "backend")

from lumilink.database import close_db, connect_db
from lumilink.logging_config import setup_logging
from lumilink.runtime import build_engine
from lumilink.services.badge_catalog import BadgeCatalog, CatalogLoadError
from lumilink.services.badge_service import BadgeNotFound
from lumilink.services.event_handlers.badge_handlers import dispatch_awards
from lumilink.services.rule_evaluator import describe_rule


def _validate(path: str) -> int:
    try:
        catalog = BadgeCatalog.from_file(path)
    except CatalogLoadError as exc:
        print(f"INVALID: {exc}")
        return 1
    for d in catalog:
        rule = describe_rule(d.rule) if d.rule is not None else "(manual)"
        print(f"{d.rarity.value:<10} {d.key:<24} {d.icon.value:<10} {rule}")
    print(f"OK: {len(catalog)} badges, metrics: {', '.join(sorted(catalog.referenced_metrics()))}")
    return 0


async def _run(args: argparse.Namespace) -> int:
    catalog = BadgeCatalog.load_default()
    await connect_db()
    orchestrator, service = build_engine(catalog)
    try:
        if args.command == "evaluate":
            report = await orchestrator.run_pass(args.user_id, "admin")
            await dispatch_awards(catalog, report.granted, source="badge_admin")
            print(f"checked={report.checked} granted={[r.badge_key for r in report.granted]}")
            if report.degraded:
                print(f"skipped (metrics)={report.skipped_metrics} skipped (ledger)={report.skipped_ledger}")
        elif args.command == "progress":
            summary = await service.get_user_badges(args.user_id)
            for b in summary.badges:
                mark = "x" if b.is_completed else " "
                print(f"[{mark}] {b.key:<24} {b.progress_pct:6.2f}%  {b.current:g}/{b.target if b.target is not None else '-'}")
            print(f"{summary.earned_count}/{summary.total_count} earned")
        elif args.command == "award":
            result = await service.award_badge(args.user_id, args.badge_key)
            print("granted" if result.granted else "already held")
        elif args.command == "revoke":
            removed = await service.revoke_badge(args.user_id, args.badge_key)
            print("revoked" if removed else "not held")
        elif args.command == "sweep":
            from lumilink.workers.badge_engine import check_badges

            awarded = await check_badges(orchestrator)
            print(f"awarded {awarded} badges")
    except BadgeNotFound as exc:
        print(f"unknown badge: {exc.args[0]}")
        return 1
    finally:
        await close_db()
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Inspect and administer LumiLink badges.")
    sub = parser.add_subparsers(dest="command", required=True)

    p_validate = sub.add_parser("validate", help="Validate a JSON badge catalog file.")
    p_validate.add_argument("path")

    for name, help_text in (("evaluate", "Run one evaluation pass for a user."),
                            ("progress", "Show a user's badge progress.")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("user_id")

    for name, help_text in (("award", "Grant a badge manually."),
                            ("revoke", "Remove a badge (administrative).")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("user_id")
        p.add_argument("badge_key")

    sub.add_parser("sweep", help="Run the catch-up sweep over all users once.")

    args = parser.parse_args()
    setup_logging()
    if args.command == "validate":
        sys.exit(_validate(args.path))
    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
