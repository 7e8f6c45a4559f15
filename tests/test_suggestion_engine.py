"""
Suggestion Generator Tests
==========================
Route filtering, carrier and class tie-breaks, budget band, chips and stats.
"""

from datetime import timedelta

import pytest

from app.models.models import RecordFamily
from app.user_context.suggestion_engine import SuggestionGenerator

from conftest import BASE_TIME, booking


@pytest.mark.asyncio
async def test_budget_band_from_three_bookings(service):
    """
    Test: Confirmed prices 200, 300, 400.

    Expected:
    - Band mean ± population sd ≈ [218.4, 381.6]
    """
    for amount in (200, 300, 400):
        await service.add_booking("u1", booking(amount=amount))

    budget = (await service.generate_suggestions("u1")).budget

    assert budget.mean == 300
    assert budget.stddev == pytest.approx(81.65, abs=0.01)
    assert budget.low == pytest.approx(218.4, abs=0.1)
    assert budget.high == pytest.approx(381.6, abs=0.1)
    assert budget.sample_size == 3
    assert budget.currency == "USD"


@pytest.mark.asyncio
async def test_budget_omitted_below_two_samples(service):
    await service.add_booking("u1", booking(amount=200))

    suggestions = await service.generate_suggestions("u1")

    assert suggestions.budget is None
    assert len(suggestions.routes) == 1


@pytest.mark.asyncio
async def test_budget_lower_bound_clamped_at_zero(service):
    for amount in (0, 0, 1000):
        await service.add_booking("u1", booking(amount=amount))

    budget = (await service.generate_suggestions("u1")).budget

    assert budget.low == 0
    assert budget.high > budget.mean


@pytest.mark.asyncio
async def test_budget_reports_profile_max_budget(service):
    await service.update_profile("u1", {"budget_preferences": {"max_budget": 350}}, consent_given=True)
    for amount in (200, 300):
        await service.add_booking("u1", booking(amount=amount))

    budget = (await service.generate_suggestions("u1")).budget

    assert budget.max_budget == 350


@pytest.mark.asyncio
async def test_routes_without_endpoints_are_top_n(service):
    for destination, times in (("YVR", 3), ("LAX", 2), ("SFO", 1)):
        for _ in range(times):
            await service.add_booking("u1", booking("SEA", destination))

    generator = SuggestionGenerator(service.profiles, service.history, service.preferences, top_n=2)
    routes = (await generator.generate("u1", {})).routes

    assert [r.route for r in routes] == ["SEA→YVR", "SEA→LAX"]
    assert routes[0].confidence == 0.8
    assert routes[1].confidence == 0.7


@pytest.mark.asyncio
async def test_routes_filtered_by_single_endpoint(service):
    await service.add_booking("u1", booking("SEA", "YVR"))
    await service.add_booking("u1", booking("PDX", "YVR"))
    await service.add_booking("u1", booking("SEA", "LAX"))
    await service.add_booking("u1", booking("YVR", "SEA"))

    by_origin = await service.generate_suggestions("u1", {"origin": "sea"})
    by_destination = await service.generate_suggestions("u1", {"destination": "YVR"})

    assert sorted(r.route for r in by_origin.routes) == ["SEA→LAX", "SEA→YVR"]
    assert sorted(r.route for r in by_destination.routes) == ["PDX→YVR", "SEA→YVR"]


@pytest.mark.asyncio
async def test_routes_with_both_endpoints_match_exactly(service):
    await service.add_booking("u1", booking("SEA", "YVR"))
    await service.add_booking("u1", booking("SEA", "YVR"))

    flown = await service.generate_suggestions("u1", {"origin": "SEA", "destination": "YVR"})
    unflown = await service.generate_suggestions("u1", {"origin": "YVR", "destination": "SEA"})

    assert [(r.route, r.count) for r in flown.routes] == [("SEA→YVR", 2)]
    assert unflown.routes == []


@pytest.mark.asyncio
async def test_carrier_tie_breaks_on_recency_then_name(service):
    await service.add_booking("u1", booking(carrier="AS", timestamp=BASE_TIME))
    await service.add_booking("u1", booking(carrier="AC", timestamp=BASE_TIME + timedelta(hours=1)))

    assert (await service.generate_suggestions("u1")).carrier.carrier == "AC"

    await service.add_booking("u1", booking(carrier="AS", timestamp=BASE_TIME + timedelta(hours=2)))
    await service.add_booking("u1", booking(carrier="AC", timestamp=BASE_TIME + timedelta(hours=2)))

    carrier = (await service.generate_suggestions("u1")).carrier
    assert (carrier.carrier, carrier.count) == ("AC", 2)


@pytest.mark.asyncio
async def test_class_mode_wins_outright(service):
    for cabin in ("business", "business", "economy"):
        await service.add_booking("u1", booking(cabin_class=cabin))

    cabin = (await service.generate_suggestions("u1")).cabin_class

    assert cabin.cabin_class == "business"
    assert cabin.count == 2
    assert cabin.tie_break is None


@pytest.mark.asyncio
async def test_class_tie_prefers_profile_class(service):
    await service.update_profile("u1", {"budget_preferences": {"preferred_class": "business"}}, consent_given=True)
    for cabin in ("first", "business", "economy"):
        await service.add_booking("u1", booking(cabin_class=cabin))

    cabin = (await service.generate_suggestions("u1")).cabin_class

    assert cabin.cabin_class == "business"
    assert cabin.tie_break == "profile"


@pytest.mark.asyncio
async def test_class_tie_falls_back_to_cheapest(service):
    await service.update_profile("u1", {"budget_preferences": {"preferred_class": "first"}}, consent_given=True)
    for cabin in ("business", "premium_economy"):
        await service.add_booking("u1", booking(cabin_class=cabin))

    cabin = (await service.generate_suggestions("u1")).cabin_class

    assert cabin.cabin_class == "premium_economy"
    assert cabin.tie_break == "cheapest"


@pytest.mark.asyncio
async def test_chips_follow_fixed_order(service):
    for amount in (200, 300):
        await service.add_booking("u1", booking(amount=amount, carrier="AC", cabin_class="economy"))

    chips = (await service.generate_suggestions("u1")).chips()

    assert [c.type for c in chips] == ["frequent_route", "airline", "travel_class", "budget"]
    assert chips[0].text == "SEA → YVR"
    assert chips[2].text == "You usually prefer economy class"


@pytest.mark.asyncio
async def test_no_history_gives_empty_suggestions(service):
    suggestions = await service.generate_suggestions("ghost", None)

    assert suggestions.routes == []
    assert suggestions.carrier is None
    assert suggestions.cabin_class is None
    assert suggestions.budget is None
    assert suggestions.chips() == []


@pytest.mark.asyncio
async def test_corrupt_profile_only_degrades_profile_parts(service, store):
    for amount in (200, 300):
        await service.add_booking("u1", booking(amount=amount, cabin_class="economy"))
    await store.write(RecordFamily.PROFILES, "u1", {"user_id": "u1", "created_at": "bad"})

    suggestions = await service.generate_suggestions("u1")

    assert len(suggestions.routes) == 1
    assert suggestions.cabin_class.cabin_class == "economy"
    assert suggestions.budget.max_budget is None


@pytest.mark.asyncio
async def test_corrupt_history_empties_history_parts(service, store):
    await service.add_booking("u1", booking(amount=200))
    await store.write(RecordFamily.BOOKING_HISTORY, "u1", {"events": "garbage"})

    suggestions = await service.generate_suggestions("u1")
    stats = await service.get_stats("u1")

    assert suggestions.routes == []
    assert suggestions.budget is None
    assert stats.trip_count == 0


@pytest.mark.asyncio
async def test_stats_summary(service):
    profile = await service.create_profile("u1")
    await service.add_booking("u1", booking("SEA", "YVR", 200, cabin_class="economy"))
    await service.add_booking("u1", booking("SEA", "YVR", 400, cabin_class="economy"))
    await service.add_booking("u1", booking("SEA", "LAX", 999, status="cancelled"))
    last = await service.add_booking("u1", booking("SEA", "LAX", 300, cabin_class="business"))

    stats = await service.get_stats("u1")

    assert stats.trip_count == 3
    assert stats.average_budget == 300
    assert stats.total_spent == 900
    assert stats.top_route.route == "SEA→YVR"
    assert stats.member_since == profile.created_at
    assert stats.last_trip_at == last.timestamp
    assert stats.preferred_class == "economy"


@pytest.mark.asyncio
async def test_stats_for_unknown_user(service):
    stats = await service.get_stats("ghost")

    assert stats.trip_count == 0
    assert stats.average_budget is None
    assert stats.total_spent == 0
    assert stats.top_route is None
    assert stats.member_since is None
