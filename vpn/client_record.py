"""Typed view over the client list embedded in an inbound's settings JSON.

3x-ui stores clients as a JSON array inside the inbound ``settings`` string.
Every update call must send the whole client object back, so a record keeps
the dict it was decoded from and only the fields that were actually changed
are rewritten on encode. Fields the codec does not model live in ``extra``
and are written back untouched.

Usage:
    settings, records = decode_settings(inbound.settings)
    record = records[0]
    record.enable = False
    payload = encode_client(record)   # only "enable" differs from the original
"""

import json
import secrets
import string
import uuid as uuid_lib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .xui_models import ParseError

# Separator between the canonical username and the per-inbound disambiguator
EMAIL_SUFFIX_SEPARATOR = "::"

# attribute name -> JSON key
FIELD_KEYS: Tuple[Tuple[str, str], ...] = (
    ("email", "email"),
    ("uuid", "id"),
    ("password", "password"),
    ("sub_id", "subId"),
    ("enable", "enable"),
    ("expiry_time", "expiryTime"),
    ("total_gb", "totalGB"),
    ("tg_id", "tgId"),
    ("limit_ip", "limitIp"),
)
KNOWN_KEYS = frozenset(key for _, key in FIELD_KEYS)

# Panel JSON decodes large numbers as floats in some clients; the panel rejects
# scientific notation, so these always go back as integers.
NUMERIC_KEYS = frozenset({
    "expiryTime", "totalGB", "limitIp", "tgId", "reset", "created_at", "updated_at",
})

DEFAULT_SHADOWSOCKS_METHOD = "aes-256-gcm"

_SUB_ID_ALPHABET = string.ascii_lowercase + string.digits
_PASSWORD_ALPHABET = string.ascii_letters + string.digits


@dataclass
class ClientRecord:
    """One client entry of one inbound."""

    email: str = ""
    uuid: Optional[str] = None
    password: Optional[str] = None
    sub_id: str = ""
    enable: bool = True
    expiry_time: int = 0  # epoch ms, 0 = unlimited
    total_gb: int = 0  # bytes despite the name, 0 = unlimited
    tg_id: int = 0
    limit_ip: int = 0
    extra: Dict[str, Any] = field(default_factory=dict)
    original: Optional[Dict[str, Any]] = field(default=None, repr=False, compare=False)

    @property
    def canonical_username(self) -> str:
        return canonical_username(self.email)

    def client_key(self, protocol: str) -> str:
        """Identifier the panel expects in update/delete URLs for this protocol."""
        if protocol == "trojan":
            return self.password or ""
        if protocol == "shadowsocks":
            return self.email
        return self.uuid or ""


def _normalize_number(value: Any) -> Any:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _to_int(value: Any) -> int:
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value.strip()))
        except ValueError:
            return 0
    return 0


def _decode_known(data: Dict[str, Any]) -> Dict[str, Any]:
    """Typed values of the modelled fields, with panel defaults for absent keys."""
    enable = data.get("enable", True)
    return {
        "email": str(data.get("email") or ""),
        "uuid": data.get("id") if isinstance(data.get("id"), str) else None,
        "password": data.get("password") if isinstance(data.get("password"), str) else None,
        "sub_id": str(data.get("subId") or ""),
        "enable": enable if isinstance(enable, bool) else bool(enable),
        "expiry_time": _to_int(data.get("expiryTime")),
        "total_gb": _to_int(data.get("totalGB")),
        "tg_id": _to_int(data.get("tgId")),
        "limit_ip": _to_int(data.get("limitIp")),
    }


def decode_client(data: Dict[str, Any]) -> ClientRecord:
    """Build a ClientRecord from one raw client dict."""
    if not isinstance(data, dict):
        raise ParseError(f"Client entry is not an object: {data!r}")

    extra = {key: value for key, value in data.items() if key not in KNOWN_KEYS}
    return ClientRecord(**_decode_known(data), extra=extra, original=dict(data))


def encode_client(record: ClientRecord) -> Dict[str, Any]:
    """Serialize a record, rewriting only the fields that changed.

    Records built from scratch (no original) emit every modelled field
    that has a value.
    """
    out: Dict[str, Any] = {}
    original = record.original
    baseline = _decode_known(original) if original is not None else None

    if original is not None:
        for key, value in original.items():
            if key in KNOWN_KEYS:
                out[key] = value
            elif key in record.extra:
                out[key] = record.extra[key]

    for attr, key in FIELD_KEYS:
        value = getattr(record, attr)
        if baseline is not None and baseline[attr] == value:
            continue
        if value is None:
            out.pop(key, None)
            continue
        out[key] = value

    for key, value in record.extra.items():
        if key not in out:
            out[key] = value

    for key in NUMERIC_KEYS:
        if key in out:
            out[key] = _normalize_number(out[key])

    return out


def decode_settings(settings_json: str) -> Tuple[Dict[str, Any], List[ClientRecord]]:
    """Parse an inbound settings string into (settings dict, client records).

    Raises:
        ParseError: If the JSON is malformed or ``clients`` is not an array
    """
    if not settings_json:
        return {}, []

    try:
        settings = json.loads(settings_json)
    except (TypeError, ValueError) as e:
        raise ParseError(f"Invalid settings JSON: {e}", e)

    if not isinstance(settings, dict):
        raise ParseError("Settings JSON is not an object")

    clients = settings.get("clients", [])
    if clients is None:
        clients = []
    if not isinstance(clients, list):
        raise ParseError("Settings 'clients' is not an array")

    return settings, [decode_client(c) for c in clients]


def encode_settings(records: List[ClientRecord]) -> str:
    """Settings payload for addClient/updateClient: {"clients": [...]}."""
    return json.dumps({"clients": [encode_client(r) for r in records]})


def canonical_username(email: str) -> str:
    """Strip the per-inbound disambiguator from an email."""
    return email.split(EMAIL_SUFFIX_SEPARATOR, 1)[0]


def inbound_email(canonical: str, remark: str, inbound_id: int) -> str:
    """Email for a user's copy in an inbound: ``<canonical>::<remark>``."""
    return f"{canonical}{EMAIL_SUFFIX_SEPARATOR}{remark or f'inbound{inbound_id}'}"


def rename_email(email: str, new_canonical: str) -> str:
    """Replace the canonical part of an email, keeping any suffix."""
    if EMAIL_SUFFIX_SEPARATOR in email:
        suffix = email.split(EMAIL_SUFFIX_SEPARATOR, 1)[1]
        return f"{new_canonical}{EMAIL_SUFFIX_SEPARATOR}{suffix}"
    return new_canonical


def generate_password(length: int = 16) -> str:
    return "".join(secrets.choice(_PASSWORD_ALPHABET) for _ in range(length))


def generate_sub_id(length: int = 16) -> str:
    """Subscription ID: lowercase letters and digits."""
    return "".join(secrets.choice(_SUB_ID_ALPHABET) for _ in range(length))


def new_credential(protocol: str, inbound_settings: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Fresh protocol credential fields for a new client in an inbound.

    Returns a dict with ``uuid``/``password`` attributes and protocol extras.
    """
    protocol = (protocol or "").lower()
    if protocol == "vmess":
        return {"uuid": str(uuid_lib.uuid4()), "extra": {"security": "auto", "alterId": 0}}
    if protocol == "trojan":
        return {"password": generate_password()}
    if protocol == "shadowsocks":
        method = (inbound_settings or {}).get("method") or DEFAULT_SHADOWSOCKS_METHOD
        return {"password": generate_password(), "extra": {"method": method}}
    # vless and anything unknown behave like vless
    return {"uuid": str(uuid_lib.uuid4()), "extra": {"flow": ""}}


def build_record(
    protocol: str,
    email: str,
    sub_id: str,
    tg_id: int,
    expiry_time: int,
    total_gb: int = 0,
    limit_ip: int = 0,
    enable: bool = True,
    inbound_settings: Optional[Dict[str, Any]] = None,
) -> ClientRecord:
    """New ClientRecord with a fresh credential for the given protocol."""
    credential = new_credential(protocol, inbound_settings)
    extra = {"reset": 0, "comment": ""}
    extra.update(credential.get("extra", {}))
    return ClientRecord(
        email=email,
        uuid=credential.get("uuid"),
        password=credential.get("password"),
        sub_id=sub_id,
        enable=enable,
        expiry_time=int(expiry_time),
        total_gb=int(total_gb),
        tg_id=int(tg_id),
        limit_ip=int(limit_ip),
        extra=extra,
    )
