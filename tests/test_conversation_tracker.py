"""
Conversation Tracker Tests
==========================
Timestamp ordering, capacity eviction and session grouping.
"""

from datetime import timedelta

import pytest

from app.db.locks import UserLockManager
from app.user_context.context_manager import ConversationTracker
from services.exceptions import ValidationError

from conftest import BASE_TIME


def turn(minutes: int, text: str = "", **extra):
    data = {"timestamp": BASE_TIME + timedelta(minutes=minutes), "user_input": text or f"turn {minutes}"}
    data.update(extra)
    return data


@pytest.fixture
def tracker(store):
    return ConversationTracker(store, UserLockManager(), max_turns=3)


@pytest.mark.asyncio
async def test_window_evicts_oldest_beyond_capacity(tracker):
    """
    Test: Four turns into a window of three.

    Expected:
    - Oldest turn evicted
    - Most recent first on read
    """
    for minute in range(4):
        await tracker.record_turn("u1", turn(minute))

    window = await tracker.get_window("u1")
    recent = await tracker.get_recent("u1", limit=10)

    assert len(window.turns) == 3
    assert [t.user_input for t in recent] == ["turn 3", "turn 2", "turn 1"]


@pytest.mark.asyncio
async def test_late_turn_inserted_in_timestamp_order(tracker):
    await tracker.record_turn("u1", turn(10))
    await tracker.record_turn("u1", turn(30))
    await tracker.record_turn("u1", turn(20))

    window = await tracker.get_window("u1")

    assert [t.user_input for t in window.turns] == ["turn 10", "turn 20", "turn 30"]


@pytest.mark.asyncio
async def test_late_turn_older_than_window_is_evicted(tracker):
    for minute in (10, 20, 30):
        await tracker.record_turn("u1", turn(minute))

    await tracker.record_turn("u1", turn(5))

    window = await tracker.get_window("u1")
    assert [t.user_input for t in window.turns] == ["turn 10", "turn 20", "turn 30"]


@pytest.mark.asyncio
async def test_get_recent_defaults_to_five(store):
    tracker = ConversationTracker(store, UserLockManager())
    for minute in range(8):
        await tracker.record_turn("u1", turn(minute))

    recent = await tracker.get_recent("u1")

    assert len(recent) == 5
    assert recent[0].user_input == "turn 7"
    assert tracker.max_turns == 50


@pytest.mark.asyncio
async def test_turn_without_timestamp_rejected(tracker):
    with pytest.raises(ValidationError):
        await tracker.record_turn("u1", {"user_input": "hello"})

    assert await tracker.get_recent("u1") == []


@pytest.mark.asyncio
async def test_structured_fields_round_trip(tracker):
    await tracker.record_turn("u1", turn(
        1,
        "fly me to vancouver in business",
        extracted_intent={"destination": "YVR", "cabin_class": "Business", "passengers": 2},
        suggestions_shown=[{"type": "frequent_route", "text": "SEA → YVR"}],
        booking_decision={"booking_id": "bk_1", "confirmed": False},
        session_id="s1",
    ))

    stored = (await tracker.get_recent("u1"))[0]

    assert stored.extracted_intent.destination == "YVR"
    assert stored.extracted_intent.cabin_class == "business"
    assert stored.booking_decision.confirmed is False
    assert stored.suggestions_shown[0]["type"] == "frequent_route"


@pytest.mark.asyncio
async def test_unknown_intent_class_is_dropped(tracker):
    recorded = await tracker.record_turn("u1", turn(1, extracted_intent={"cabin_class": "sleeper"}))

    assert recorded.extracted_intent.cabin_class is None


@pytest.mark.asyncio
async def test_session_turns_oldest_first(tracker):
    await tracker.record_turn("u1", turn(1, session_id="a"))
    await tracker.record_turn("u1", turn(2, session_id="b"))
    await tracker.record_turn("u1", turn(3, session_id="a"))

    turns = await tracker.get_session_turns("u1", "a")

    assert [t.user_input for t in turns] == ["turn 1", "turn 3"]
    assert await tracker.get_session_turns("ghost", "a") == []
