"""VPN panel module for the 3x-ui account bot.

This module provides the panel gateway, the client record codec and the
subscription URL builder.

Usage:
    from vpn import PanelGateway, decode_settings

    gateway = PanelGateway(PANEL_URL, PANEL_USERNAME, PANEL_PASSWORD)
    for inbound in gateway.list_inbounds():
        settings, records = decode_settings(inbound.settings)
"""

from .client_record import (
    ClientRecord,
    build_record,
    canonical_username,
    decode_client,
    decode_settings,
    encode_client,
    encode_settings,
    generate_sub_id,
    inbound_email,
    new_credential,
    rename_email,
)
from .xui_client import PanelGateway
from .xui_models import (
    ClientTraffic,
    InboundConfig,
    MalformedConfigError,
    NotFoundError,
    ParseError,
    PartialSyncFailure,
    RequestNotFoundError,
    TransientNetworkError,
    XUIAuthError,
    XUIClientNotFoundError,
    XUIError,
)
from .xui_uri_builder import build_subscription_url

__all__ = [
    # Gateway
    "PanelGateway",
    # Codec
    "ClientRecord",
    "build_record",
    "canonical_username",
    "decode_client",
    "decode_settings",
    "encode_client",
    "encode_settings",
    "generate_sub_id",
    "inbound_email",
    "new_credential",
    "rename_email",
    # URL utilities
    "build_subscription_url",
    # Data classes
    "InboundConfig",
    "ClientTraffic",
    # Exceptions
    "XUIError",
    "XUIAuthError",
    "TransientNetworkError",
    "MalformedConfigError",
    "ParseError",
    "NotFoundError",
    "XUIClientNotFoundError",
    "RequestNotFoundError",
    "PartialSyncFailure",
]
