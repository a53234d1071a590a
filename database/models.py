"""SQLAlchemy models for conversation state and traffic snapshots."""

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# Registration statuses
REG_INPUT_USERNAME = "input_username"
REG_INPUT_DURATION = "input_duration"
REQ_PENDING = "pending"
REQ_APPROVED = "approved"
REQ_REJECTED = "rejected"

# Free-text waiting states
STATE_AWAITING_USERNAME = "awaiting_username"
STATE_AWAITING_NEW_USERNAME = "awaiting_new_username"


class UserState(Base):
    """Free-text waiting state of a Telegram user (what the next message means)."""

    __tablename__ = "user_states"

    user_id = Column(BigInteger, primary_key=True, autoincrement=False)
    state = Column(String(50), nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<UserState(user_id={self.user_id}, state={self.state})>"


class RegistrationRequest(Base):
    """New-account request; one row per requesting user."""

    __tablename__ = "registration_requests"

    user_id = Column(BigInteger, primary_key=True, autoincrement=False)
    display_name = Column(String(255), nullable=True)  # Telegram first name
    tg_username = Column(String(255), nullable=True)  # Telegram @username
    username = Column(String(64), nullable=True)  # Chosen VPN username
    duration_days = Column(Integer, nullable=True)
    status = Column(String(20), nullable=False, default=REG_INPUT_USERNAME)
    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return (f"<RegistrationRequest(user_id={self.user_id}, username={self.username}, "
                f"days={self.duration_days}, status={self.status})>")

    @property
    def request_id(self) -> int:
        return self.user_id

    @property
    def is_pending(self) -> bool:
        return self.status == REQ_PENDING


class ExtensionRequest(Base):
    """Subscription extension request for an existing account."""

    __tablename__ = "extension_requests"

    user_id = Column(BigInteger, primary_key=True, autoincrement=False)
    tg_username = Column(String(255), nullable=True)
    username = Column(String(64), nullable=True)  # Canonical username at request time
    duration_days = Column(Integer, nullable=True)
    # Expiry fixed by the first approval attempt, so a retry pushes the same value
    target_expiry = Column(BigInteger, nullable=True)
    status = Column(String(20), nullable=False, default=REG_INPUT_DURATION)
    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return (f"<ExtensionRequest(user_id={self.user_id}, username={self.username}, "
                f"days={self.duration_days}, status={self.status})>")

    @property
    def request_id(self) -> int:
        return self.user_id

    @property
    def is_pending(self) -> bool:
        return self.status == REQ_PENDING


class TrafficSnapshot(Base):
    """Cumulative inbound traffic counters at one point in time.

    Counters come straight from the panel and may go backwards when an
    inbound's traffic is reset; the forecast handles that, storage does not.
    """

    __tablename__ = "traffic_snapshots"

    id = Column(Integer, primary_key=True)
    inbound_id = Column(Integer, nullable=False)
    timestamp = Column(DateTime, nullable=False)
    upload_bytes = Column(BigInteger, default=0)
    download_bytes = Column(BigInteger, default=0)
    total_bytes = Column(BigInteger, default=0)

    __table_args__ = (
        Index("ix_traffic_snapshots_inbound_ts", "inbound_id", "timestamp"),
        Index("ix_traffic_snapshots_ts", "timestamp"),  # For cleanup queries
    )

    def __repr__(self):
        return f"<TrafficSnapshot(inbound_id={self.inbound_id}, ts={self.timestamp}, total={self.total_bytes})>"


class ExpiryNotice(Base):
    """Expiry reminder already sent for a given expiry value and threshold."""

    __tablename__ = "expiry_notices"

    id = Column(Integer, primary_key=True)
    user_id = Column(BigInteger, nullable=False)
    expiry_time = Column(BigInteger, nullable=False)  # epoch ms the reminder was about
    days = Column(Integer, nullable=False)
    sent_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_expiry_notices_unique", "user_id", "expiry_time", "days", unique=True),
    )

    def __repr__(self):
        return f"<ExpiryNotice(user_id={self.user_id}, expiry={self.expiry_time}, days={self.days})>"
