"""Shared fixtures: in-memory database and an in-memory 3x-ui panel."""

import json
from typing import Dict, List, Optional

import pytest

from database import StateStore, init_test_db
from vpn.client_record import ClientRecord, encode_client
from vpn.xui_models import ClientTraffic, InboundConfig, XUIClientNotFoundError, XUIError


class FakePanel:
    """Stand-in for PanelGateway that keeps inbounds as plain dicts.

    Clients are stored exactly as the codec encodes them, so tests can
    inspect the raw JSON the real panel would receive.
    """

    def __init__(self):
        self.inbounds: Dict[int, dict] = {}
        self.fail_add: set = set()
        self.fail_update: set = set()
        self.fail_list = False
        self.add_calls: List[tuple] = []
        self.update_calls: List[tuple] = []
        self.traffic: Dict[str, ClientTraffic] = {}
        self.panel_settings: dict = {}

    def add_inbound(self, inbound_id: int, protocol: str, remark: str = "",
                    clients: Optional[List[dict]] = None, up: int = 0, down: int = 0,
                    **settings) -> None:
        body = dict(settings)
        body["clients"] = list(clients or [])
        self.inbounds[inbound_id] = {
            "protocol": protocol, "remark": remark, "settings": body, "up": up, "down": down,
        }

    def clients(self, inbound_id: int) -> List[dict]:
        return self.inbounds[inbound_id]["settings"]["clients"]

    # --- PanelGateway surface ---

    def list_inbounds(self) -> List[InboundConfig]:
        if self.fail_list:
            raise XUIError("panel down")
        return [
            InboundConfig(
                id=inbound_id,
                protocol=data["protocol"],
                remark=data["remark"],
                settings=data["raw"] if "raw" in data else json.dumps(data["settings"]),
                up=data["up"],
                down=data["down"],
            )
            for inbound_id, data in sorted(self.inbounds.items())
        ]

    def add_client(self, inbound_id: int, record: ClientRecord) -> None:
        self.add_calls.append((inbound_id, record))
        if inbound_id in self.fail_add:
            raise XUIError(f"addClient failed on {inbound_id}")
        clients = self.clients(inbound_id)
        if any(c.get("email") == record.email for c in clients):
            raise XUIError(f"Duplicate email: {record.email}")
        clients.append(encode_client(record))

    def _key_of(self, protocol: str, client: dict) -> str:
        if protocol == "trojan":
            return client.get("password", "")
        if protocol == "shadowsocks":
            return client.get("email", "")
        return client.get("id", "")

    def update_client(self, inbound_id: int, client_key: str, record: ClientRecord) -> None:
        self.update_calls.append((inbound_id, client_key, record))
        if inbound_id in self.fail_update:
            raise XUIError(f"updateClient failed on {inbound_id}")
        protocol = self.inbounds[inbound_id]["protocol"]
        clients = self.clients(inbound_id)
        for i, client in enumerate(clients):
            if self._key_of(protocol, client) == client_key:
                clients[i] = encode_client(record)
                return
        raise XUIError(f"Client {client_key} not found in {inbound_id}")

    def delete_client(self, inbound_id: int, client_key: str) -> None:
        protocol = self.inbounds[inbound_id]["protocol"]
        clients = self.clients(inbound_id)
        for i, client in enumerate(clients):
            if self._key_of(protocol, client) == client_key:
                del clients[i]
                return
        raise XUIError(f"Client {client_key} not found in {inbound_id}")

    def get_client_traffic(self, email: str) -> ClientTraffic:
        if email not in self.traffic:
            raise XUIClientNotFoundError(f"Client not found: {email}")
        return self.traffic[email]

    def get_panel_settings(self) -> dict:
        return self.panel_settings


def vless_client(email: str, tg_id: int, sub_id: str = "sub0000000000001", expiry: int = 0,
                 uuid: str = "11111111-1111-1111-1111-111111111111", **extra) -> dict:
    client = {
        "id": uuid, "email": email, "enable": True, "expiryTime": expiry, "totalGB": 0,
        "limitIp": 3, "tgId": tg_id, "subId": sub_id, "flow": "", "reset": 0, "comment": "",
    }
    client.update(extra)
    return client


@pytest.fixture
def panel():
    return FakePanel()


@pytest.fixture
def store():
    """StateStore over a fresh in-memory database."""
    engine, TestSession = init_test_db()
    yield StateStore(TestSession)
    engine.dispose()
