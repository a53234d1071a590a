"""HTTP gateway to the 3x-ui panel API."""

import logging
from typing import Any, List, Optional
from urllib.parse import quote

import requests

from .client_record import ClientRecord, encode_settings
from .xui_models import (
    ClientTraffic,
    InboundConfig,
    MalformedConfigError,
    TransientNetworkError,
    XUIAuthError,
    XUIClientNotFoundError,
    XUIError,
)

logger = logging.getLogger(__name__)


class PanelGateway:
    """Session-holding client for the 3x-ui panel.

    Every call authenticates lazily and, if the panel answers 401/403, drops
    the connection, or serves the login page instead of JSON, logs in once
    more and retries the call once.

    Usage:
        gateway = PanelGateway("https://panel.example.com:2053", "admin", "secret")
        for inbound in gateway.list_inbounds():
            print(inbound.id, inbound.protocol, inbound.remark)
    """

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        timeout: int = 30,
        verify_tls: bool = True,
        session: Optional[requests.Session] = None,
    ):
        """Initialize the gateway.

        Args:
            base_url: Panel root including any web base path, without /panel
            username: Panel login
            password: Panel password
            timeout: Fixed per-request timeout in seconds
            verify_tls: Verify the panel's TLS certificate
            session: Pre-built requests session (tests)
        """
        self.base_url = base_url.rstrip("/")
        self.username = username
        self.password = password
        self.timeout = timeout
        self.verify_tls = verify_tls
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        self._authenticated = False

    # === Session ===

    def login(self) -> None:
        """Authenticate and store the session cookie on the requests session.

        Raises:
            XUIAuthError: Credentials rejected
            TransientNetworkError: Panel unreachable
        """
        try:
            resp = self.session.post(
                f"{self.base_url}/login",
                data={"username": self.username, "password": self.password},
                timeout=self.timeout,
                verify=self.verify_tls,
            )
        except requests.RequestException as e:
            raise TransientNetworkError(f"Panel unreachable: {e}", e)

        try:
            payload = resp.json()
        except ValueError:
            payload = {}

        if resp.status_code != 200 or not payload.get("success"):
            raise XUIAuthError(
                f"Login failed (HTTP {resp.status_code}): {payload.get('msg', '')}".strip()
            )

        self._authenticated = True
        logger.info(f"Logged in to 3x-ui panel at {self.base_url}")

    def _request(self, method: str, path: str, **kwargs) -> dict:
        """Send a request, renewing the session once on expiry or network failure."""
        url = f"{self.base_url}{path}"
        last_error: Optional[Exception] = None

        for attempt in range(2):
            if not self._authenticated:
                self.login()

            try:
                resp = self.session.request(
                    method, url, timeout=self.timeout, verify=self.verify_tls, **kwargs
                )
            except requests.RequestException as e:
                logger.warning(f"{method} {path} failed (attempt {attempt + 1}): {e}")
                last_error = e
                self._authenticated = False
                continue

            if resp.status_code in (401, 403):
                logger.info(f"Session expired on {path}, re-authenticating")
                last_error = XUIAuthError(f"HTTP {resp.status_code}")
                self._authenticated = False
                continue

            if resp.status_code != 200:
                raise XUIError(f"{method} {path} returned HTTP {resp.status_code}: {resp.text[:200]}")

            try:
                return resp.json()
            except ValueError as e:
                # Expired sessions are redirected to the HTML login page
                logger.info(f"Non-JSON answer on {path}, re-authenticating")
                last_error = e
                self._authenticated = False

        raise TransientNetworkError(f"{method} {path} failed after re-login: {last_error}", last_error)

    def _call(self, method: str, path: str, **kwargs) -> Any:
        """Request and unwrap the panel's {"success", "msg", "obj"} envelope."""
        payload = self._request(method, path, **kwargs)
        if not isinstance(payload, dict) or not payload.get("success"):
            msg = payload.get("msg", "") if isinstance(payload, dict) else ""
            raise XUIError(f"Panel rejected {path}: {msg or 'success=false'}")
        return payload.get("obj")

    # === Inbounds ===

    def list_inbounds(self) -> List[InboundConfig]:
        """All inbounds with settings and cumulative counters."""
        obj = self._call("GET", "/panel/api/inbounds/list")
        if not isinstance(obj, list):
            raise XUIError("Invalid inbound list format")

        inbounds = []
        for item in obj:
            try:
                inbounds.append(InboundConfig.from_api(item))
            except MalformedConfigError as e:
                logger.error(f"Skipping malformed inbound entry: {e}")
        return inbounds

    # === Clients ===

    def add_client(self, inbound_id: int, record: ClientRecord) -> None:
        """Create one client in an inbound."""
        self._call(
            "POST",
            "/panel/api/inbounds/addClient",
            json={"id": inbound_id, "settings": encode_settings([record])},
        )
        logger.info(f"Created client {record.email} in inbound {inbound_id}")

    def update_client(self, inbound_id: int, client_key: str, record: ClientRecord) -> None:
        """Replace one client object, identified by its protocol key."""
        if not client_key:
            raise XUIError(f"Client {record.email} has no identifier for update")
        self._call(
            "POST",
            f"/panel/api/inbounds/updateClient/{quote(client_key, safe='')}",
            json={"id": inbound_id, "settings": encode_settings([record])},
        )
        logger.info(f"Updated client {record.email} in inbound {inbound_id}")

    def delete_client(self, inbound_id: int, client_key: str) -> None:
        """Delete one client from an inbound."""
        if not client_key:
            raise XUIError("Empty client identifier for delete")
        self._call(
            "POST",
            f"/panel/api/inbounds/{inbound_id}/delClient/{quote(client_key, safe='')}",
        )
        logger.info(f"Deleted client {client_key} from inbound {inbound_id}")

    def get_client_traffic(self, email: str) -> ClientTraffic:
        """Traffic counters of one client copy, looked up by email.

        Raises:
            XUIClientNotFoundError: Panel has no traffic row for this email
        """
        obj = self._call("GET", f"/panel/api/inbounds/getClientTraffics/{quote(email, safe='')}")
        if not obj:
            raise XUIClientNotFoundError(f"Client not found: {email}")
        return ClientTraffic.from_api(obj)

    # === Panel ===

    def get_panel_settings(self) -> dict:
        """Panel settings (subscription server host, port, path, ...)."""
        obj = self._call("POST", "/panel/setting/all")
        return obj if isinstance(obj, dict) else {}
