"""
PreferenceService

Preference learning from confirmed bookings.

Responsibilities:
- Fold each confirmed BookingEvent into the user's PreferenceAggregate
  (route, carrier and class counters plus streaming budget moments)
- Rebuild the aggregate from the booking log whenever it is missing, stale
  or behind the log

Every update is a counter increment, a max() on last_seen, or a Welford step
applied in log order, so replaying the log from scratch reproduces the
incrementally maintained aggregate exactly.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from app.core.config import settings
from app.db.locks import UserLockManager
from app.infrastructure.record_store import RecordStore
from app.models.models import RecordFamily
from app.user_context.models import (
    BookingEvent,
    BookingLog,
    BudgetStats,
    CarrierCounter,
    PreferenceAggregate,
    RouteCounter,
    utcnow,
)
from services.currency_service import CurrencyConverter
from services.exceptions import CorruptRecord, CurrencyConversionError, StorageUnavailable

logger = logging.getLogger(__name__)


class PreferenceService:
    """
    Preference learning engine.

    on_confirmed_booking() expects the caller to hold the user's write lock
    (the history service does); rebuild() and get_aggregate() take it themselves.
    """

    def __init__(
        self,
        store: RecordStore,
        locks: UserLockManager,
        converter: CurrencyConverter,
        reference_currency: Optional[str] = None,
    ) -> None:
        self._store = store
        self._locks = locks
        self._converter = converter
        self.reference_currency = (reference_currency or settings.REFERENCE_CURRENCY).upper()

    # ---------------------------------------------------------------------
    # PUBLIC API
    # ---------------------------------------------------------------------

    def empty_aggregate(self, user_id: str) -> PreferenceAggregate:
        return PreferenceAggregate(
            user_id=user_id,
            budget_stats=BudgetStats(currency=self.reference_currency),
        )

    async def on_confirmed_booking(
        self,
        user_id: str,
        event: BookingEvent,
        previous_confirmed: int = 0,
    ) -> PreferenceAggregate:
        """
        Fold one confirmed booking into the stored aggregate and persist it.

        Events already folded in (by sequence) are ignored, so redelivery is
        harmless. Non-confirmed events leave the aggregate untouched.

        previous_confirmed is the log's last confirmed sequence before this
        event; an aggregate behind it missed an update and is flagged stale.
        """
        aggregate = await self._load(user_id)
        if aggregate is None:
            aggregate = self.empty_aggregate(user_id)

        if aggregate.applied_through < previous_confirmed:
            logger.warning(
                f"Preference aggregate for user {user_id} missed bookings "
                f"{aggregate.applied_through + 1}..{previous_confirmed}, flagging stale"
            )
            aggregate.stale = True

        if not event.is_confirmed:
            logger.debug(f"Skipping {event.status} booking {event.id} for preference learning")
            return aggregate

        if event.sequence is not None and event.sequence <= aggregate.applied_through:
            logger.debug(f"Booking {event.id} already applied to aggregate for user {user_id}")
            return aggregate

        await self._apply(aggregate, event)
        aggregate.updated_at = utcnow()
        await self._store.write_model(RecordFamily.PREFERENCE_AGGREGATES, user_id, aggregate)

        logger.info(
            f"Updated preferences for user {user_id}: "
            f"routes={len(aggregate.route_frequency)}, budget_n={aggregate.budget_stats.count}"
        )
        return aggregate

    async def get_aggregate(self, user_id: str) -> PreferenceAggregate:
        """
        Current aggregate, or an empty one for users without confirmed bookings.
        A stale, corrupt or lagging aggregate is rebuilt from the log first.
        """
        try:
            aggregate = await self._load(user_id)
        except CorruptRecord as e:
            logger.warning(f"Corrupt preference aggregate for user {user_id}, rebuilding: {e.reason}")
            aggregate = None

        log_tail = await self._last_confirmed_sequence(user_id)

        if aggregate is None and log_tail == 0:
            return self.empty_aggregate(user_id)

        if aggregate is None or aggregate.stale or aggregate.applied_through < log_tail:
            logger.warning(f"Preference aggregate for user {user_id} is stale, recomputing from history")
            return await self.rebuild(user_id)

        return aggregate

    async def rebuild(self, user_id: str) -> PreferenceAggregate:
        """
        Recompute the aggregate from the full booking log and persist it.
        Without a log (never booked, or erased) nothing is written.
        """
        async with self._locks.hold(user_id):
            log = await self._store.read_model(RecordFamily.BOOKING_HISTORY, user_id, BookingLog)
            if log is None:
                logger.info(f"No booking history for user {user_id}, skipping aggregate rebuild")
                return self.empty_aggregate(user_id)

            events = log.events
            aggregate = await self.replay(user_id, events)
            aggregate.updated_at = utcnow()
            await self._store.write_model(RecordFamily.PREFERENCE_AGGREGATES, user_id, aggregate)

        logger.info(f"Rebuilt preference aggregate for user {user_id} from {len(events)} bookings")
        return aggregate

    async def replay(self, user_id: str, events: Iterable[BookingEvent]) -> PreferenceAggregate:
        """Pure recomputation: fold every confirmed event, in order, into a fresh aggregate."""
        aggregate = self.empty_aggregate(user_id)
        for event in events:
            if event.is_confirmed:
                await self._apply(aggregate, event)
        return aggregate

    async def mark_stale(self, user_id: str) -> None:
        """
        Best-effort flag so the next read recomputes.
        A lagging applied_through triggers the same rebuild if this write fails.
        """
        try:
            aggregate = await self._load(user_id) or self.empty_aggregate(user_id)
            aggregate.stale = True
            await self._store.write_model(RecordFamily.PREFERENCE_AGGREGATES, user_id, aggregate)
            logger.warning(f"Marked preference aggregate stale for user {user_id}")
        except (StorageUnavailable, CorruptRecord) as e:
            logger.error(f"Could not mark aggregate stale for user {user_id}: {e}")

    # ---------------------------------------------------------------------
    # INTERNAL HELPERS
    # ---------------------------------------------------------------------

    async def _load(self, user_id: str) -> Optional[PreferenceAggregate]:
        return await self._store.read_model(
            RecordFamily.PREFERENCE_AGGREGATES, user_id, PreferenceAggregate
        )

    async def _last_confirmed_sequence(self, user_id: str) -> int:
        log = await self._store.read_model(RecordFamily.BOOKING_HISTORY, user_id, BookingLog)
        return log.last_confirmed_sequence if log else 0

    async def _apply(self, aggregate: PreferenceAggregate, event: BookingEvent) -> None:
        seen_at = event.timestamp or utcnow()

        route = aggregate.route_frequency.get(event.route)
        if route is None:
            aggregate.route_frequency[event.route] = RouteCounter(
                origin=event.origin,
                destination=event.destination,
                count=1,
                last_seen=seen_at,
            )
        else:
            route.count += 1
            route.last_seen = max(route.last_seen, seen_at)

        if event.carrier:
            carrier = aggregate.carrier_frequency.get(event.carrier)
            if carrier is None:
                aggregate.carrier_frequency[event.carrier] = CarrierCounter(count=1, last_seen=seen_at)
            else:
                carrier.count += 1
                carrier.last_seen = max(carrier.last_seen, seen_at)

        if event.cabin_class:
            cabin = str(event.cabin_class)
            aggregate.class_frequency[cabin] = aggregate.class_frequency.get(cabin, 0) + 1

        try:
            amount = await self._normalize_price(event)
        except CurrencyConversionError as e:
            aggregate.budget_stats.skipped_conversions += 1
            logger.warning(
                f"Skipping budget stats for booking {event.id} "
                f"({event.price.amount} {event.price.currency}): {e}"
            )
        else:
            aggregate.budget_stats.add(amount)

        if event.sequence is not None:
            aggregate.applied_through = max(aggregate.applied_through, event.sequence)

    async def _normalize_price(self, event: BookingEvent) -> float:
        if event.price.currency == self.reference_currency:
            return event.price.amount
        return await self._converter.convert(
            event.price.amount, event.price.currency, self.reference_currency
        )
