"""
HistoryService

Append-only booking log per user, plus a route-frequency index kept next to it.

Responsibilities:
- Validate and ingest BookingEvents (assigning id, sequence and timestamp)
- Keep the log in timestamp order, which is also insertion order
- Forward confirmed bookings to the preference engine under the same user lock

The log and its route index live in one record, so they are published together.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from app.core.config import settings
from app.db.locks import UserLockManager
from app.infrastructure.record_store import RecordStore
from app.models.models import RecordFamily
from app.user_context.models import (
    BookingEvent,
    BookingLog,
    PopularRoute,
    RouteCounter,
    utcnow,
)
from services.exceptions import AlreadyExists, UserContextError, ValidationError
from services.preference_service import PreferenceService

logger = logging.getLogger(__name__)


def rank_routes(route_index: Dict[str, RouteCounter]) -> List[PopularRoute]:
    """Order routes by count desc, then most recent, then route key."""
    routes = [
        PopularRoute(
            route=key,
            origin=counter.origin,
            destination=counter.destination,
            count=counter.count,
            last_seen=counter.last_seen,
        )
        for key, counter in route_index.items()
        if counter.count > 0
    ]
    routes.sort(key=lambda r: r.route)
    routes.sort(key=lambda r: (r.count, r.last_seen), reverse=True)
    return routes


class HistoryService:
    """
    Booking history tracker.

    The clock is injectable so tests can pin ingestion timestamps.
    """

    def __init__(
        self,
        store: RecordStore,
        locks: UserLockManager,
        preference_service: PreferenceService,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._locks = locks
        self._preferences = preference_service
        self._clock = clock

    # ---------------------------------------------------------------------
    # PUBLIC API
    # ---------------------------------------------------------------------

    async def add_booking(self, event: Union[BookingEvent, Dict[str, Any]]) -> BookingEvent:
        """
        Append a booking to the user's log.

        Raises:
            ValidationError: malformed event or timestamp earlier than the log tail
            AlreadyExists: an event with the same id is already logged
        """
        event = self._validate(event)
        user_id = event.user_id

        async with self._locks.hold(user_id):
            log = await self.get_log(user_id) or BookingLog(user_id=user_id)

            if event.id and any(existing.id == event.id for existing in log.events):
                raise AlreadyExists(f"Booking {event.id} already recorded for user {user_id}")

            tail = log.events[-1].timestamp if log.events else None
            timestamp = event.timestamp
            if timestamp is None:
                timestamp = self._clock()
                # Keep the log ordered even if the clock steps backwards
                if tail and timestamp < tail:
                    timestamp = tail
            elif tail and timestamp < tail:
                raise ValidationError(
                    f"Booking timestamp {timestamp.isoformat()} precedes the last "
                    f"recorded booking ({tail.isoformat()})"
                )

            sequence = log.next_sequence
            previous_confirmed = log.last_confirmed_sequence
            event = event.model_copy(update={
                "sequence": sequence,
                "timestamp": timestamp,
                "id": event.id or self._new_booking_id(timestamp, sequence),
            })

            log.events.append(event)
            log.next_sequence = sequence + 1
            if event.is_confirmed:
                log.last_confirmed_sequence = sequence
                self._index_route(log, event)

            await self._store.write_model(RecordFamily.BOOKING_HISTORY, user_id, log)
            logger.info(f"✅ Recorded {event.status} booking {event.id} ({event.route}) for user {user_id}")

            if event.is_confirmed:
                try:
                    await self._preferences.on_confirmed_booking(
                        user_id, event, previous_confirmed=previous_confirmed
                    )
                except UserContextError as e:
                    logger.error(
                        f"Preference update failed for booking {event.id}, user {user_id}: {e}",
                        exc_info=True,
                    )
                    await self._preferences.mark_stale(user_id)

        return event

    async def get_history(self, user_id: str, limit: Optional[int] = None) -> List[BookingEvent]:
        """Most recent bookings first. limit=None uses DEFAULT_HISTORY_LIMIT."""
        limit = settings.DEFAULT_HISTORY_LIMIT if limit is None else limit
        if limit < 0:
            raise ValidationError("limit must be non-negative")

        log = await self.get_log(user_id)
        if log is None:
            return []
        return list(reversed(log.events))[:limit]

    async def get_popular_routes(
        self, user_id: str, top_n: Optional[int] = settings.POPULAR_ROUTES_TOP_N
    ) -> List[PopularRoute]:
        """
        Confirmed-booking routes ranked by (count desc, last_seen desc, route asc).
        top_n=None returns every route.
        """
        if top_n is not None and top_n < 0:
            raise ValidationError("top_n must be non-negative")

        log = await self.get_log(user_id)
        if log is None:
            return []

        routes = rank_routes(log.route_index)
        return routes if top_n is None else routes[:top_n]

    async def get_confirmed_bookings(self, user_id: str) -> List[BookingEvent]:
        """Chronological confirmed bookings; the preference engine's replay source."""
        log = await self.get_log(user_id)
        if log is None:
            return []
        return [event for event in log.events if event.is_confirmed]

    async def get_log(self, user_id: str) -> Optional[BookingLog]:
        return await self._store.read_model(RecordFamily.BOOKING_HISTORY, user_id, BookingLog)

    # ---------------------------------------------------------------------
    # INTERNAL HELPERS
    # ---------------------------------------------------------------------

    @staticmethod
    def _validate(event: Union[BookingEvent, Dict[str, Any]]) -> BookingEvent:
        if isinstance(event, BookingEvent):
            return event
        try:
            return BookingEvent.model_validate(event)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid booking event: {e}") from e

    @staticmethod
    def _new_booking_id(timestamp: datetime, sequence: int) -> str:
        # Millisecond prefix keeps ids creation-ordered across users
        return f"bk_{int(timestamp.timestamp() * 1000):013d}_{sequence:06d}"

    @staticmethod
    def _index_route(log: BookingLog, event: BookingEvent) -> None:
        counter = log.route_index.get(event.route)
        if counter is None:
            log.route_index[event.route] = RouteCounter(
                origin=event.origin,
                destination=event.destination,
                count=1,
                last_seen=event.timestamp,
            )
        else:
            counter.count += 1
            counter.last_seen = max(counter.last_seen, event.timestamp)
