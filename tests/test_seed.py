import asyncio
import json
from decimal import Decimal

import pytest

from cermin.errors import ValidationError
from cermin.infra.sql import make_async_engine
from cermin.model.events import get_event
from cermin.seed import main, parse_events, seed_events

EVENTS = [
    {"id": "evt-1", "title": "Cermin Fest", "price": 49000,
     "location": "Jakarta", "starts_at": 1767225600},
    {"id": "evt-free", "title": "Open Mic", "price": 0},
]


async def load(database_url, event_id):
    engine, SessionAsync, _ = make_async_engine(database_url)
    try:
        async with SessionAsync() as db:
            async with db.begin():
                return await get_event(db, event_id)
    finally:
        await engine.dispose()


def test_parse_events():
    parsed = parse_events(EVENTS)
    assert parsed[0] == {
        "event_id": "evt-1",
        "title": "Cermin Fest",
        "price": Decimal("49000"),
        "location": "Jakarta",
        "starts_at": 1767225600.0,
    }
    assert parsed[1]["price"] == Decimal("0")
    assert parsed[1]["location"] == ""
    assert parsed[1]["starts_at"] is None


@pytest.mark.parametrize("raw", [
    [{"title": "No id", "price": 1000}],
    [{"id": "evt-1", "price": 1000}],
    [{"id": "evt-1", "title": "No price"}],
    [{"id": "", "title": "Blank id", "price": 1000}],
    ["evt-1"],
])
def test_parse_events_rejects_bad_items(raw):
    with pytest.raises(ValidationError):
        parse_events(raw)


async def test_seed_events_creates_schema_and_upserts(database_url):
    assert await seed_events(database_url, parse_events(EVENTS)) == 2

    changed = [{"id": "evt-1", "title": "Cermin Fest 2", "price": "55000"}]
    assert await seed_events(database_url, parse_events(changed)) == 1

    event = await load(database_url, "evt-1")
    assert event.title == "Cermin Fest 2"
    assert event.price == Decimal("55000")
    assert (await load(database_url, "evt-free")).price == Decimal("0")


def test_main_reads_file_and_environment(tmp_path, database_url,
                                        monkeypatch):
    path = tmp_path / "events.json"
    path.write_text(json.dumps(EVENTS), encoding="utf-8")
    monkeypatch.setenv("DATABASE_URL", database_url)

    main([str(path)])

    event = asyncio.run(load(database_url, "evt-1"))
    assert event.location == "Jakarta"
    assert event.starts_at == 1767225600.0
