"""
Allowed origins updater
Usage: python set_allowed_origins.py <origin> [<origin> ...]

Replaces the CORS allow-list stored in app_config and drops the cached copy,
so every instance picks up the new list on its next request.
"""

import logging
import sys
from typing import Callable, Optional

from sqlalchemy.orm import Session

from boinvit_settlement.cors import update_allowed_origins
from boinvit_settlement.database import SessionLocal

logging.basicConfig(level=logging.INFO, format="%(message)s")
logger = logging.getLogger(__name__)


def set_allowed_origins(origins: list[str], session_factory: Callable[[], Session] = SessionLocal) -> list[str]:
    cleaned = [origin.strip().rstrip("/") for origin in origins if origin.strip()]
    if not cleaned:
        raise ValueError("At least one origin is required")
    for origin in cleaned:
        if not origin.startswith(("http://", "https://")):
            raise ValueError(f"Not an http(s) origin: {origin}")

    db = session_factory()
    try:
        row = update_allowed_origins(db, cleaned)
        return list(row.value)
    finally:
        db.close()


def main(argv: Optional[list[str]] = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    if not args:
        logger.error("Usage: python set_allowed_origins.py <origin> [<origin> ...]")
        return 1

    try:
        origins = set_allowed_origins(args)
    except ValueError as e:
        logger.error(f"❌ {e}")
        return 1

    logger.info(f"✅ Allowed origins set to {origins}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
