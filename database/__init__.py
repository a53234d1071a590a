"""Database package for the 3x-ui account bot."""

from .models import (
    Base,
    UserState,
    RegistrationRequest,
    ExtensionRequest,
    TrafficSnapshot,
    ExpiryNotice,
    REG_INPUT_USERNAME,
    REG_INPUT_DURATION,
    REQ_PENDING,
    REQ_APPROVED,
    REQ_REJECTED,
    STATE_AWAITING_USERNAME,
    STATE_AWAITING_NEW_USERNAME,
)
from .connection import (
    init_db,
    get_session_factory,
    init_test_db,
)
from .store import StateStore

__all__ = [
    # Models
    "Base",
    "UserState",
    "RegistrationRequest",
    "ExtensionRequest",
    "TrafficSnapshot",
    "ExpiryNotice",
    # Statuses
    "REG_INPUT_USERNAME",
    "REG_INPUT_DURATION",
    "REQ_PENDING",
    "REQ_APPROVED",
    "REQ_REJECTED",
    "STATE_AWAITING_USERNAME",
    "STATE_AWAITING_NEW_USERNAME",
    # Connection
    "init_db",
    "get_session_factory",
    "init_test_db",
    # Store
    "StateStore",
]
