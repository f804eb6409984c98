"""
backend/tests/test_runtime.py

Purpose:
    Host entry points: inline activity reporting without the event bus and
    fail-fast startup on a broken catalog.
"""

from __future__ import annotations

import pytest

from lumilink import runtime
from lumilink.config import settings
from lumilink.services.badge_catalog import BadgeCatalog, CatalogLoadError


class _Metrics:
    async def get_metric(self, user_id: str, metric_name: str) -> float:
        return 1


@pytest.mark.asyncio
async def test_record_activity_inline_awards_and_notifies(fake_db) -> None:
    catalog = BadgeCatalog.from_entries([
        {"key": "first-link", "name": "First Link", "rarity": "common", "rule": "link_count >= 1"},
    ])
    orchestrator, service = runtime.build_engine(catalog, metric_source=_Metrics())
    engine = runtime.EngineRuntime(catalog=catalog, orchestrator=orchestrator, service=service, bus=None, scheduler=None)

    first = await runtime.record_activity(engine, "u1", "link_created")
    second = await runtime.record_activity(engine, "u1", "link_created")

    assert [r.badge_key for r in first] == ["first-link"]
    assert second == []
    assert fake_db.badge_notifications.docs["u1:first-link"]["seen"] is False


@pytest.mark.asyncio
async def test_start_engine_refuses_broken_catalog(monkeypatch, tmp_path) -> None:
    broken = tmp_path / "badges.json"
    broken.write_text('[{"key": "a", "name": "A", "rule": "follower_count >= 1"}]', encoding="utf-8")
    monkeypatch.setattr(settings, "BADGE_CATALOG_FILE", str(broken))

    async def _never_connect() -> None:
        raise AssertionError("database must not be touched")

    monkeypatch.setattr(runtime, "connect_db", _never_connect)

    with pytest.raises(CatalogLoadError):
        await runtime.start_engine()
