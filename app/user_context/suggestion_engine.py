# app/user_context/suggestion_engine.py
"""
Suggestion Engine for Personalized Search
Turns booking history, learned preferences and the profile into ranked suggestions.
Rule-based and deterministic: every tie has an explicit breaker.

Each part of a SuggestionSet (routes, carrier, class, budget) is computed on its
own; a corrupt or missing record empties that part and leaves the rest alone.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from app.core.config import settings
from app.user_context.models import (
    CABIN_CLASS_ORDER,
    BudgetSuggestion,
    CabinClass,
    CarrierSuggestion,
    ClassSuggestion,
    PopularRoute,
    PreferenceAggregate,
    QueryContext,
    RouteSuggestion,
    SuggestionSet,
    TravelerProfile,
    UserStats,
    route_key,
)
from services.exceptions import CorruptRecord, ValidationError
from services.history_service import HistoryService
from services.preference_service import PreferenceService
from services.profile_service import ProfileService

logger = logging.getLogger(__name__)


def route_confidence(count: int) -> float:
    return round(min(0.9, 0.5 + 0.1 * count), 2)


def rank_carriers(aggregate: PreferenceAggregate) -> List[CarrierSuggestion]:
    """Carriers by count desc, then most recent, then name."""
    carriers = [
        CarrierSuggestion(carrier=name, count=counter.count, last_seen=counter.last_seen)
        for name, counter in aggregate.carrier_frequency.items()
        if counter.count > 0
    ]
    carriers.sort(key=lambda c: c.carrier)
    carriers.sort(key=lambda c: (c.count, c.last_seen), reverse=True)
    return carriers


class SuggestionGenerator:
    """
    Generates personalized suggestions and summary stats for one user.
    Reads only; never takes the user lock except through an aggregate rebuild.
    """

    def __init__(
        self,
        profiles: ProfileService,
        history: HistoryService,
        preferences: PreferenceService,
        top_n: Optional[int] = None,
        band_k: Optional[float] = None,
    ):
        """
        Initialize suggestion generator.

        Args:
            profiles: Profile manager
            history: Booking history tracker
            preferences: Preference learning engine
            top_n: Route suggestions to return (defaults to POPULAR_ROUTES_TOP_N)
            band_k: Budget band width in standard deviations (defaults to BUDGET_BAND_K)
        """
        self.profiles = profiles
        self.history = history
        self.preferences = preferences
        self.top_n = top_n or settings.POPULAR_ROUTES_TOP_N
        self.band_k = settings.BUDGET_BAND_K if band_k is None else band_k
        logger.debug("✓ SuggestionGenerator initialized")

    async def generate(
        self,
        user_id: str,
        query: Union[QueryContext, Dict[str, Any], None] = None,
    ) -> SuggestionSet:
        """
        Build the suggestion set for the user's current query.

        Args:
            user_id: User identifier
            query: What the user is asking about (origin/destination/date/class)

        Returns:
            SuggestionSet with independently optional parts
        """
        query = self._parse_query(query)

        profile = await self._load_profile(user_id)
        aggregate = await self._load_aggregate(user_id)

        suggestions = SuggestionSet(
            user_id=user_id,
            routes=await self._suggest_routes(user_id, query),
            carrier=self._suggest_carrier(aggregate),
            cabin_class=self._suggest_class(aggregate, profile),
            budget=self._suggest_budget(aggregate, profile),
        )

        logger.debug(
            f"Generated suggestions for user {user_id}: routes={len(suggestions.routes)}, "
            f"carrier={bool(suggestions.carrier)}, class={bool(suggestions.cabin_class)}, "
            f"budget={bool(suggestions.budget)}"
        )
        return suggestions

    async def get_stats(self, user_id: str) -> UserStats:
        """Summary of the user's travel: trips, spend, top route, membership."""
        profile = await self._load_profile(user_id)
        aggregate = await self._load_aggregate(user_id)

        try:
            confirmed = await self.history.get_confirmed_bookings(user_id)
            routes = await self.history.get_popular_routes(user_id, top_n=1)
        except CorruptRecord as e:
            logger.warning(f"Ignoring corrupt booking history for user {user_id}: {e.reason}")
            confirmed, routes = [], []

        average_budget = None
        total_spent = 0.0
        if aggregate and aggregate.budget_stats.count > 0:
            average_budget = round(aggregate.budget_stats.mean, 2)
            # Sum of normalized prices; skipped conversions are not counted
            total_spent = round(aggregate.budget_stats.mean * aggregate.budget_stats.count, 2)

        cabin = self._suggest_class(aggregate, profile)

        return UserStats(
            user_id=user_id,
            trip_count=len(confirmed),
            average_budget=average_budget,
            total_spent=total_spent,
            top_route=routes[0] if routes else None,
            member_since=profile.created_at if profile else None,
            last_trip_at=confirmed[-1].timestamp if confirmed else None,
            preferred_class=cabin.cabin_class if cabin else None,
        )

    # ============================================================
    # PER-PART GENERATORS
    # ============================================================

    async def _suggest_routes(self, user_id: str, query: QueryContext) -> List[RouteSuggestion]:
        try:
            ranked = await self.history.get_popular_routes(user_id, top_n=None)
        except CorruptRecord as e:
            logger.warning(f"Ignoring corrupt booking history for user {user_id}: {e.reason}")
            return []

        if query.origin and query.destination:
            wanted = route_key(query.origin, query.destination)
            ranked = [r for r in ranked if r.route == wanted]
        elif query.origin:
            ranked = [r for r in ranked if r.origin == query.origin]
        elif query.destination:
            ranked = [r for r in ranked if r.destination == query.destination]

        return [self._to_route_suggestion(r) for r in ranked[:self.top_n]]

    @staticmethod
    def _to_route_suggestion(route: PopularRoute) -> RouteSuggestion:
        return RouteSuggestion(**route.model_dump(), confidence=route_confidence(route.count))

    @staticmethod
    def _suggest_carrier(aggregate: Optional[PreferenceAggregate]) -> Optional[CarrierSuggestion]:
        if aggregate is None:
            return None
        carriers = rank_carriers(aggregate)
        return carriers[0] if carriers else None

    @staticmethod
    def _suggest_class(
        aggregate: Optional[PreferenceAggregate],
        profile: Optional[TravelerProfile],
    ) -> Optional[ClassSuggestion]:
        if aggregate is None or not aggregate.class_frequency:
            return None

        top_count = max(aggregate.class_frequency.values())
        if top_count <= 0:
            return None

        tied = [CabinClass(name) for name, count in aggregate.class_frequency.items() if count == top_count]
        if len(tied) == 1:
            return ClassSuggestion(cabin_class=tied[0], count=top_count)

        preferred = profile.budget_preferences.preferred_class if profile else None
        if preferred and CabinClass(preferred) in tied:
            return ClassSuggestion(cabin_class=preferred, count=top_count, tie_break="profile")

        cheapest = min(tied, key=CABIN_CLASS_ORDER.index)
        return ClassSuggestion(cabin_class=cheapest, count=top_count, tie_break="cheapest")

    def _suggest_budget(
        self,
        aggregate: Optional[PreferenceAggregate],
        profile: Optional[TravelerProfile],
    ) -> Optional[BudgetSuggestion]:
        if aggregate is None:
            return None

        stats = aggregate.budget_stats
        if stats.count < 2:
            return None

        stddev = stats.stddev or 0.0
        spread = self.band_k * stddev
        return BudgetSuggestion(
            low=round(max(0.0, stats.mean - spread), 2),
            high=round(stats.mean + spread, 2),
            mean=round(stats.mean, 2),
            stddev=round(stddev, 2),
            currency=stats.currency,
            sample_size=stats.count,
            max_budget=profile.budget_preferences.max_budget if profile else None,
        )

    # ============================================================
    # HELPERS
    # ============================================================

    @staticmethod
    def _parse_query(query: Union[QueryContext, Dict[str, Any], None]) -> QueryContext:
        if query is None:
            return QueryContext()
        if isinstance(query, QueryContext):
            return query
        try:
            return QueryContext.model_validate(query)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid query context: {e}") from e

    async def _load_profile(self, user_id: str) -> Optional[TravelerProfile]:
        return await self.profiles.get_profile(user_id, tolerate_corrupt=True)

    async def _load_aggregate(self, user_id: str) -> Optional[PreferenceAggregate]:
        try:
            return await self.preferences.get_aggregate(user_id)
        except CorruptRecord as e:
            logger.warning(f"Preferences unavailable for user {user_id}: {e.reason}")
            return None
