# app/user_context/context_manager.py
"""
Conversation Context Tracker
Keeps a bounded, timestamp-ordered window of recent conversation turns per user.
Only persistence and ordering live here; interpreting turns is someone else's job.
"""

import bisect
import logging
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from app.core.config import settings
from app.db.locks import UserLockManager
from app.infrastructure.record_store import RecordStore
from app.models.models import RecordFamily
from app.user_context.models import ConversationTurn, ConversationWindow
from services.exceptions import ValidationError

logger = logging.getLogger(__name__)


class ConversationTracker:
    """
    Per-user recency window of ConversationTurns, stored oldest first.
    The oldest turns are evicted once the window exceeds MAX_TURNS.
    """

    MAX_TURNS = settings.CONVERSATION_WINDOW_SIZE  # 50 turns
    DEFAULT_RECENT = settings.DEFAULT_RECENT_TURNS

    def __init__(self, store: RecordStore, locks: UserLockManager, max_turns: Optional[int] = None):
        """
        Initialize conversation tracker.

        Args:
            store: Shared record store
            locks: Shared per-user lock manager
            max_turns: Window capacity override (defaults to CONVERSATION_WINDOW_SIZE)
        """
        self._store = store
        self._locks = locks
        self.max_turns = max_turns or self.MAX_TURNS
        logger.debug(f"✓ ConversationTracker initialized with window={self.max_turns}")

    # ============================================================
    # WRITES
    # ============================================================

    async def record_turn(
        self,
        user_id: str,
        turn: Union[ConversationTurn, Dict[str, Any]],
    ) -> ConversationTurn:
        """
        Insert a turn in timestamp order, trimming the window if needed.

        Args:
            user_id: User identifier
            turn: ConversationTurn or raw dict; a timestamp is required

        Returns:
            The validated turn as stored

        Raises:
            ValidationError: missing timestamp or malformed turn
        """
        turn = self._validate(turn)

        async with self._locks.hold(user_id):
            window = await self.get_window(user_id) or ConversationWindow(user_id=user_id)

            # Equal timestamps keep arrival order
            keys = [t.timestamp for t in window.turns]
            position = bisect.bisect_right(keys, turn.timestamp)
            window.turns.insert(position, turn)

            if len(window.turns) > self.max_turns:
                removed_count = len(window.turns) - self.max_turns
                window.turns = window.turns[-self.max_turns:]
                logger.debug(f"Evicted {removed_count} old turns for user {user_id}")

            await self._store.write_model(RecordFamily.CONVERSATION_CONTEXT, user_id, window)

        logger.debug(f"✓ Recorded turn for user {user_id} (total={len(window.turns)})")
        return turn

    # ============================================================
    # READS
    # ============================================================

    async def get_window(self, user_id: str) -> Optional[ConversationWindow]:
        return await self._store.read_model(
            RecordFamily.CONVERSATION_CONTEXT, user_id, ConversationWindow
        )

    async def get_recent(self, user_id: str, limit: Optional[int] = None) -> List[ConversationTurn]:
        """
        Most recent turns first.

        Args:
            user_id: User identifier
            limit: Maximum number of turns to return (defaults to DEFAULT_RECENT_TURNS)
        """
        limit = self.DEFAULT_RECENT if limit is None else limit
        if limit < 0:
            raise ValidationError("limit must be non-negative")

        window = await self.get_window(user_id)
        if not window or not window.turns:
            return []
        return list(reversed(window.turns))[:limit]

    async def get_session_turns(self, user_id: str, session_id: str) -> List[ConversationTurn]:
        """Turns of one session still inside the window, oldest first."""
        window = await self.get_window(user_id)
        if not window:
            return []
        return [turn for turn in window.turns if turn.session_id == session_id]

    @staticmethod
    def _validate(turn: Union[ConversationTurn, Dict[str, Any]]) -> ConversationTurn:
        if isinstance(turn, ConversationTurn):
            return turn
        if not isinstance(turn, dict) or turn.get("timestamp") is None:
            raise ValidationError("Conversation turn requires a timestamp")
        try:
            return ConversationTurn.model_validate(turn)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid conversation turn: {e}") from e
