"""
UserContextService

Facade over the traveler context subsystem and its composition root.

One record store and one lock manager are created here and handed to every
component, so the whole subsystem shares a single explicit lifecycle:

    service = create_user_context_service()
    await service.initialize()
    ...
    await service.close()

Besides delegating, the facade owns the privacy operations (export, erase) and
the profile read view, which folds learned behavior into the stored profile.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from app.core.config import settings
from app.db.locks import UserLockManager
from app.infrastructure.record_store import RecordStore, get_record_store
from app.user_context.context_manager import ConversationTracker
from app.user_context.models import (
    BookingEvent,
    ConversationTurn,
    FrequentRoute,
    PopularRoute,
    QueryContext,
    SuggestionSet,
    TravelerProfile,
    UserDataExport,
    UserStats,
    utcnow,
)
from app.user_context.suggestion_engine import SuggestionGenerator, rank_carriers
from services.currency_service import CurrencyConverter, get_currency_converter
from services.exceptions import CorruptRecord, ValidationError
from services.history_service import HistoryService
from services.preference_service import PreferenceService
from services.profile_service import ProfileService

logger = logging.getLogger(__name__)

PREFERRED_AIRLINES_LIMIT = 3


class UserContextService:
    """
    Entry point for collaborators (HTTP router, booking pipeline, chat flow).
    """

    def __init__(
        self,
        store: RecordStore,
        converter: Optional[CurrencyConverter] = None,
        locks: Optional[UserLockManager] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.locks = locks or UserLockManager()
        self.converter = converter or get_currency_converter()

        self.profiles = ProfileService(store, self.locks)
        self.preferences = PreferenceService(store, self.locks, self.converter)
        self.history = HistoryService(store, self.locks, self.preferences, clock=clock)
        self.conversations = ConversationTracker(store, self.locks)
        self.suggestions = SuggestionGenerator(self.profiles, self.history, self.preferences)

    async def initialize(self) -> None:
        await self.store.initialize()
        logger.info("✅ User context service initialized")

    async def close(self) -> None:
        await self.converter.close()
        await self.store.close()
        logger.info("✅ User context service closed")

    # ---------------------------------------------------------------------
    # PROFILE
    # ---------------------------------------------------------------------

    async def create_profile(self, user_id: str, initial_data: Optional[Dict[str, Any]] = None) -> TravelerProfile:
        profile = await self.profiles.create_profile(user_id, initial_data)
        return await self._profile_view(profile)

    async def get_profile(self, user_id: str) -> Optional[TravelerProfile]:
        profile = await self.profiles.get_profile(user_id)
        if profile is None:
            return None
        return await self._profile_view(profile)

    async def require_profile(self, user_id: str) -> TravelerProfile:
        profile = await self.profiles.require_profile(user_id)
        return await self._profile_view(profile)

    async def update_profile(
        self,
        user_id: str,
        partial_update: Dict[str, Any],
        consent_given: bool = False,
    ) -> TravelerProfile:
        profile = await self.profiles.update_profile(user_id, partial_update, consent_given)
        return await self._profile_view(profile)

    # ---------------------------------------------------------------------
    # HISTORY & CONVERSATION
    # ---------------------------------------------------------------------

    async def add_booking(self, user_id: str, event: Union[BookingEvent, Dict[str, Any]]) -> BookingEvent:
        if isinstance(event, BookingEvent):
            if event.user_id != user_id:
                raise ValidationError(f"Booking belongs to {event.user_id}, not {user_id}")
        else:
            event = {**event, "user_id": user_id}
        return await self.history.add_booking(event)

    async def get_history(self, user_id: str, limit: Optional[int] = None) -> List[BookingEvent]:
        return await self.history.get_history(user_id, limit)

    async def get_popular_routes(
        self, user_id: str, top_n: Optional[int] = settings.POPULAR_ROUTES_TOP_N
    ) -> List[PopularRoute]:
        return await self.history.get_popular_routes(user_id, top_n)

    async def record_turn(self, user_id: str, turn: Union[ConversationTurn, Dict[str, Any]]) -> ConversationTurn:
        return await self.conversations.record_turn(user_id, turn)

    async def get_recent_turns(self, user_id: str, limit: Optional[int] = None) -> List[ConversationTurn]:
        return await self.conversations.get_recent(user_id, limit)

    async def get_session_turns(self, user_id: str, session_id: str) -> List[ConversationTurn]:
        return await self.conversations.get_session_turns(user_id, session_id)

    # ---------------------------------------------------------------------
    # SUGGESTIONS & STATS
    # ---------------------------------------------------------------------

    async def generate_suggestions(
        self,
        user_id: str,
        query: Union[QueryContext, Dict[str, Any], None] = None,
    ) -> SuggestionSet:
        return await self.suggestions.generate(user_id, query)

    async def get_stats(self, user_id: str) -> UserStats:
        return await self.suggestions.get_stats(user_id)

    # ---------------------------------------------------------------------
    # PRIVACY
    # ---------------------------------------------------------------------

    async def export_user_data(self, user_id: str) -> UserDataExport:
        """
        Everything held for the user: profile, booking log, conversation
        window, learned preferences and summary stats.
        """
        profile = await self.profiles.get_profile(user_id)
        log = await self.history.get_log(user_id)
        window = await self.conversations.get_window(user_id)
        aggregate = await self.preferences.get_aggregate(user_id)
        stats = await self.get_stats(user_id)

        logger.info(f"Exported user data for {user_id}")
        return UserDataExport(
            user_id=user_id,
            profile=profile,
            history=log.events if log else [],
            conversations=window.turns if window else [],
            preferences=None if aggregate.is_empty else aggregate,
            stats=stats,
        )

    async def erase_user_data(self, user_id: str) -> List[str]:
        """
        Hard-delete the user from every record family.

        Returns:
            The families that held data (empty for an unknown user)

        Raises:
            PartialErasure: the backend could not confirm a complete erase
        """
        async with self.locks.hold(user_id):
            erased = await self.store.erase(user_id)

        logger.info(f"🗑️ Erased user data for {user_id}: {erased}")
        return erased

    # ---------------------------------------------------------------------
    # INTERNAL HELPERS
    # ---------------------------------------------------------------------

    async def _profile_view(self, profile: TravelerProfile) -> TravelerProfile:
        """Stored profile plus frequent routes and learned budget preferences."""
        view = profile.model_copy(deep=True)
        user_id = profile.user_id

        try:
            routes = await self.history.get_popular_routes(user_id, top_n=settings.FREQUENT_ROUTES_LIMIT)
            aggregate = await self.preferences.get_aggregate(user_id)
        except CorruptRecord as e:
            logger.warning(f"Serving profile for {user_id} without learned fields: {e.reason}")
            return view

        view.frequent_routes = [FrequentRoute(**route.model_dump()) for route in routes]
        view.budget_preferences.preferred_airlines = [
            carrier.carrier for carrier in rank_carriers(aggregate)[:PREFERRED_AIRLINES_LIMIT]
        ]
        if aggregate.budget_stats.count > 0:
            view.budget_preferences.typical_spend = round(aggregate.budget_stats.mean, 2)
        return view


def create_user_context_service(
    store: Optional[RecordStore] = None,
    converter: Optional[CurrencyConverter] = None,
) -> UserContextService:
    """Build the service with the configured backends."""
    return UserContextService(
        store or get_record_store(),
        converter=converter or get_currency_converter(),
    )
