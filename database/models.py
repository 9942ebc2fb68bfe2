"""
SQLAlchemy ORM models for the purchase intent engine.

The ChatSettings table belongs to the host application; it keeps one row per
WhatsApp chat per device, keyed by an auto-increment id. This model maps the
host's identity columns and the purchase intent columns, under their
existing camelCase column names.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger, Column, DateTime, Index, Integer, JSON, String, UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass


class ChatSettings(Base):
    __tablename__ = "ChatSettings"

    # BIGINT on PostgreSQL; SQLite only auto-increments INTEGER PRIMARY KEY
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    user_id = Column("userId", Integer, nullable=False)
    device_id = Column("deviceId", BigInteger, nullable=False)
    session_id = Column("sessionId", String(255), nullable=False)
    chat_id = Column("chatId", String(255), nullable=False)
    phone_number = Column("phoneNumber", String(255), nullable=False)

    # Purchase intent tracking
    purchase_intent_score = Column("purchaseIntentScore", Integer, default=0, nullable=False)
    purchase_intent_stage = Column("purchaseIntentStage", String(20), default="cold", nullable=False)
    intent_signals = Column("intentSignals", JSON, default=list)
    intent_objections = Column("intentObjections", JSON, default=list)
    products_of_interest = Column("productsOfInterest", JSON, default=list)
    ai_recommended_action = Column("aiRecommendedAction", String(50), nullable=True)
    intent_updated_at = Column("intentUpdatedAt", DateTime, nullable=True)
    intent_history = Column("intentHistory", JSON, default=list)
    peak_intent_score = Column("peakIntentScore", Integer, default=0, nullable=False)

    created_at = Column("createdAt", DateTime, default=_utcnow, nullable=False)
    updated_at = Column("updatedAt", DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("sessionId", "chatId", name="unique_session_chat"),
        Index("idx_chat_settings_device", "deviceId"),
        Index("idx_purchase_intent_score", "purchaseIntentScore"),
        Index("idx_purchase_intent_stage", "purchaseIntentStage"),
    )
