# app/models/models.py

from sqlalchemy import Column, String, Integer, DateTime, Text, Index
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
import enum

Base = declarative_base()

# ==========================
# ENUMS
# ==========================

class RecordFamily(str, enum.Enum):
    """
    The four per-user record families.
    Values double as the persisted family column / key segment.
    """
    PROFILES = "profiles"
    BOOKING_HISTORY = "booking_history"
    CONVERSATION_CONTEXT = "conversation_context"
    PREFERENCE_AGGREGATES = "preference_aggregates"


# ==========================
# USER RECORDS
# ==========================

class UserRecord(Base):
    __tablename__ = "user_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    family = Column(String(32), nullable=False)
    user_id = Column(String(128), nullable=False, index=True)

    # JSON text; parsed by the record store so corruption is detectable
    payload = Column(Text, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index('idx_user_record_family_user', 'family', 'user_id', unique=True),
    )
