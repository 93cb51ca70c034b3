"""
Create the schema and upsert events from a JSON file.

    python -m cermin.seed events.json

The file holds a list of objects with ``id``, ``title`` and ``price`` and
optionally ``location`` and ``starts_at`` (unix seconds). DATABASE_URL is
read the same way the server reads it.
"""
import argparse
import asyncio
import json
import logging
from decimal import Decimal
from typing import Iterable, List

from .config import Config, configure_logging
from .errors import ValidationError
from .infra.sql import make_async_engine
from .model.db import Base
from .model.events import put_event

logger = logging.getLogger(__name__)


def parse_events(raw: Iterable[dict]) -> List[dict]:
    events = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ValidationError(f"event #{i} is not an object")
        missing = [k for k in ("id", "title", "price")
                   if item.get(k) in (None, "")]
        if missing:
            raise ValidationError(
                f"event #{i} is missing {', '.join(missing)}"
            )
        starts_at = item.get("starts_at")
        events.append({
            "event_id": str(item["id"]),
            "title": str(item["title"]),
            "price": Decimal(str(item["price"])),
            "location": str(item.get("location") or ""),
            "starts_at": float(starts_at) if starts_at is not None else None,
        })
    return events


async def seed_events(database_url: str, events: List[dict]) -> int:
    engine, SessionAsync, _ = make_async_engine(database_url)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        async with SessionAsync() as db:
            async with db.begin():
                for ev in events:
                    await put_event(db, **ev)
                    logger.info("event %s: %s at %s", ev["event_id"],
                                ev["title"], ev["price"])
    finally:
        await engine.dispose()
    return len(events)


def main(argv=None) -> None:
    ap = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    ap.add_argument("path", help="JSON file with a list of events")
    args = ap.parse_args(argv)

    cfg = Config.from_env()
    configure_logging(cfg.log_level)
    with open(args.path, encoding="utf-8") as f:
        events = parse_events(json.load(f))
    n = asyncio.run(seed_events(cfg.database_url, events))
    logger.info("%d event(s) seeded", n)


if __name__ == "__main__":
    main()
