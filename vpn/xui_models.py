"""Data models and exceptions for the 3x-ui panel gateway."""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


# === Exceptions ===

class XUIError(Exception):
    """Base exception for all 3x-ui API errors."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class TransientNetworkError(XUIError):
    """Panel unreachable, or the session stayed invalid after re-login."""
    pass


class XUIAuthError(TransientNetworkError):
    """Authentication failed - invalid credentials or session expired."""
    pass


class MalformedConfigError(XUIError):
    """Inbound carries settings that cannot be interpreted."""
    pass


class ParseError(MalformedConfigError):
    """Embedded client JSON could not be decoded."""
    pass


class NotFoundError(XUIError):
    """Requested user, request or client does not exist."""
    pass


class XUIClientNotFoundError(NotFoundError):
    """Client with specified email/tgId not found on the panel."""
    pass


class RequestNotFoundError(NotFoundError):
    """No registration or extension request stored for this user."""
    pass


class PartialSyncFailure(XUIError):
    """One (user, inbound) create failed during an identity sync cycle."""

    def __init__(self, message: str, tg_id: int, inbound_id: int,
                 original_error: Optional[Exception] = None):
        super().__init__(message, original_error)
        self.tg_id = tg_id
        self.inbound_id = inbound_id


# === Data Classes ===

@dataclass
class InboundConfig:
    """One inbound as returned by /panel/api/inbounds/list."""

    id: int
    protocol: str
    remark: str
    settings: str
    port: int = 0
    enable: bool = True
    up: int = 0
    down: int = 0
    client_stats: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict) -> "InboundConfig":
        """Create from a raw inbound dictionary."""
        try:
            inbound_id = int(data["id"])
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedConfigError(f"Inbound without a valid id: {e}", e)

        settings = data.get("settings") or ""
        if not isinstance(settings, str):
            # Some forks already return the settings object decoded
            settings = json.dumps(settings)

        try:
            port = int(data.get("port") or 0)
            up = int(data.get("up") or 0)
            down = int(data.get("down") or 0)
        except (TypeError, ValueError) as e:
            raise MalformedConfigError(f"Inbound {inbound_id} has invalid counters: {e}", e)

        return cls(
            id=inbound_id,
            protocol=data.get("protocol") or "",
            remark=data.get("remark") or "",
            settings=settings,
            port=port,
            enable=bool(data.get("enable", True)),
            up=up,
            down=down,
            client_stats=list(data.get("clientStats") or []),
        )

    @property
    def display_name(self) -> str:
        """Remark, or a stable placeholder for inbounds without one."""
        return self.remark or f"inbound{self.id}"

    @property
    def total_bytes(self) -> int:
        return self.up + self.down


@dataclass
class ClientTraffic:
    """Traffic counters for one panel client (one inbound copy)."""

    email: str
    upload_bytes: int
    download_bytes: int
    enabled: bool = True
    expiry_time: int = 0
    total_limit: int = 0

    @property
    def total_bytes(self) -> int:
        return self.upload_bytes + self.download_bytes

    @classmethod
    def from_api(cls, data: dict) -> "ClientTraffic":
        return cls(
            email=data.get("email", ""),
            upload_bytes=int(data.get("up") or 0),
            download_bytes=int(data.get("down") or 0),
            enabled=bool(data.get("enable", True)),
            expiry_time=int(data.get("expiryTime") or 0),
            total_limit=int(data.get("total") or 0),
        )
