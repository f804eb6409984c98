import json
import logging

from lumilink.config import settings


def setup_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


def log_structured(logger: logging.Logger, level: int, **fields) -> None:
    """Emit one JSON line; values that are not JSON-native are stringified."""
    logger.log(level, json.dumps(fields, default=str, sort_keys=True))
