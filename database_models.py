import enum
from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Plan(str, enum.Enum):
    """Subscription tier governing entitlements."""
    FREE = "FREE"
    BASIC = "BASIC"
    PREMIUM = "PREMIUM"


class User(Base):
    """
    Identity record. Created on sign-up (credentials or OAuth), mutated by
    the Stripe webhook processor, never deleted here.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=True)
    email = Column(String, unique=True, nullable=False, index=True)
    # Null for OAuth-only accounts
    hashed_password = Column(String, nullable=True)
    image = Column(String, nullable=True)
    plan = Column(Enum(Plan, name="plan_type"), default=Plan.FREE, nullable=False)

    stripe_customer_id = Column(String, unique=True, nullable=True)
    stripe_subscription_id = Column(String, unique=True, nullable=True)
    stripe_price_id = Column(String, nullable=True)
    stripe_current_period_end = Column(DateTime(timezone=True), nullable=True)
    stripe_subscription_status = Column(String, nullable=True)
    # Epoch seconds of the newest billing event applied to this row
    stripe_event_created = Column(BigInteger, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    accounts = relationship("Account", back_populates="user", cascade="all, delete-orphan")


class Account(Base):
    """
    External OAuth identity linked to a user.
    """
    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint("provider", "provider_account_id", name="uq_accounts_provider_account"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    provider = Column(String, nullable=False)
    provider_account_id = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    user = relationship("User", back_populates="accounts")
