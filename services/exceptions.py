#services/exceptions.py

from typing import Iterable, Optional


class UserContextError(Exception):
    pass




class ValidationError(UserContextError):
    pass




class AlreadyExists(UserContextError):
    pass




class NotFound(UserContextError):
    pass




class ConsentRequired(UserContextError):
    pass




class StorageUnavailable(UserContextError):
    """Transient backend failure; safe to retry with backoff."""
    pass




class CorruptRecord(UserContextError):
    """A stored record exists but cannot be parsed. Distinct from absent."""

    def __init__(self, family: str, user_id: str, reason: Optional[str] = None):
        self.family = family
        self.user_id = user_id
        self.reason = reason
        super().__init__(f"Corrupt {family} record for user {user_id}: {reason}")




class PartialErasure(UserContextError):
    """Erasure did not complete across every record family."""

    def __init__(self, user_id: str, remaining: Iterable[str]):
        self.user_id = user_id
        self.remaining = sorted(remaining)
        super().__init__(
            f"Erasure incomplete for user {user_id}; families possibly remaining: {', '.join(self.remaining)}"
        )




class CurrencyConversionError(UserContextError):
    pass
