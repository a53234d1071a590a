"""Tests for the panel gateway and subscription URL builder."""

import json
from unittest.mock import Mock

import pytest
import requests

from vpn.client_record import ClientRecord
from vpn.xui_client import PanelGateway
from vpn.xui_models import TransientNetworkError, XUIAuthError, XUIClientNotFoundError, XUIError
from vpn.xui_uri_builder import build_subscription_url, normalize_sub_path


def make_response(status_code, payload=None):
    resp = Mock()
    resp.status_code = status_code
    resp.text = "" if payload is None else json.dumps(payload)
    if payload is None:
        resp.json.side_effect = ValueError("not json")
    else:
        resp.json.return_value = payload
    return resp


@pytest.fixture
def session():
    session = Mock()
    session.post.return_value = make_response(200, {"success": True})
    return session


@pytest.fixture
def gateway(session):
    return PanelGateway("https://panel.example.com:2053/base/", "admin", "secret", session=session)


INBOUND = {
    "id": 1, "protocol": "vless", "remark": "Germany", "port": 443, "enable": True,
    "up": 100, "down": 200, "settings": json.dumps({"clients": []}),
}


class TestSession:
    def test_logs_in_lazily(self, gateway, session):
        session.request.return_value = make_response(200, {"success": True, "obj": [INBOUND]})

        inbounds = gateway.list_inbounds()

        session.post.assert_called_once()
        assert session.post.call_args[0][0] == "https://panel.example.com:2053/base/login"
        assert inbounds[0].id == 1
        assert inbounds[0].total_bytes == 300

    def test_relogin_on_401(self, gateway, session):
        session.request.side_effect = [
            make_response(401),
            make_response(200, {"success": True, "obj": []}),
        ]

        assert gateway.list_inbounds() == []
        assert session.post.call_count == 2
        assert session.request.call_count == 2

    def test_relogin_on_login_page(self, gateway, session):
        session.request.side_effect = [
            make_response(200),  # HTML login page
            make_response(200, {"success": True, "obj": []}),
        ]

        assert gateway.list_inbounds() == []
        assert session.post.call_count == 2

    def test_gives_up_after_one_retry(self, gateway, session):
        session.request.side_effect = requests.ConnectionError("down")

        with pytest.raises(TransientNetworkError):
            gateway.list_inbounds()
        assert session.request.call_count == 2

    def test_bad_credentials(self, gateway, session):
        session.post.return_value = make_response(200, {"success": False, "msg": "wrong"})

        with pytest.raises(XUIAuthError):
            gateway.list_inbounds()

    def test_login_unreachable(self, gateway, session):
        session.post.side_effect = requests.ConnectionError("refused")

        with pytest.raises(TransientNetworkError):
            gateway.login()

    def test_panel_rejects_call(self, gateway, session):
        session.request.return_value = make_response(200, {"success": False, "msg": "Duplicate email"})

        with pytest.raises(XUIError, match="Duplicate email"):
            gateway.add_client(1, ClientRecord(email="a", uuid="u"))

    def test_server_error_is_not_retried(self, gateway, session):
        session.request.return_value = make_response(500, {"error": "boom"})

        with pytest.raises(XUIError):
            gateway.list_inbounds()
        assert session.request.call_count == 1


class TestOperations:
    def test_skips_malformed_inbound(self, gateway, session):
        session.request.return_value = make_response(
            200, {"success": True, "obj": [INBOUND, {"remark": "no id"}]}
        )

        inbounds = gateway.list_inbounds()

        assert [i.id for i in inbounds] == [1]

    @pytest.mark.parametrize("field, value", [("up", "n/a"), ("down", [1]), ("port", "https")])
    def test_skips_inbound_with_bad_counters(self, gateway, session, field, value):
        session.request.return_value = make_response(
            200, {"success": True, "obj": [INBOUND, dict(INBOUND, id=2, **{field: value})]}
        )

        inbounds = gateway.list_inbounds()

        assert [i.id for i in inbounds] == [1]
        assert inbounds[0].up == 100

    def test_add_client_payload(self, gateway, session):
        session.request.return_value = make_response(200, {"success": True})
        record = ClientRecord(email="alice", uuid="u-1", sub_id="s", tg_id=5)

        gateway.add_client(3, record)

        method, url = session.request.call_args[0]
        body = session.request.call_args[1]["json"]
        assert method == "POST"
        assert url.endswith("/panel/api/inbounds/addClient")
        assert body["id"] == 3
        assert json.loads(body["settings"])["clients"][0]["email"] == "alice"

    def test_update_client_quotes_key(self, gateway, session):
        session.request.return_value = make_response(200, {"success": True})
        record = ClientRecord(email="a::b", password="p/w+")

        gateway.update_client(2, "p/w+", record)

        url = session.request.call_args[0][1]
        assert url.endswith("/panel/api/inbounds/updateClient/p%2Fw%2B")

    def test_update_without_key(self, gateway):
        with pytest.raises(XUIError):
            gateway.update_client(2, "", ClientRecord(email="a"))

    def test_delete_client(self, gateway, session):
        session.request.return_value = make_response(200, {"success": True})

        gateway.delete_client(4, "uuid-1")

        assert session.request.call_args[0][1].endswith("/panel/api/inbounds/4/delClient/uuid-1")

    def test_client_traffic(self, gateway, session):
        session.request.return_value = make_response(
            200, {"success": True, "obj": {"email": "alice", "up": 10, "down": 20, "enable": True}}
        )

        traffic = gateway.get_client_traffic("alice")

        assert traffic.total_bytes == 30

    def test_client_traffic_not_found(self, gateway, session):
        session.request.return_value = make_response(200, {"success": True, "obj": None})

        with pytest.raises(XUIClientNotFoundError):
            gateway.get_client_traffic("ghost")


class TestSubscriptionUrl:
    def test_configured_base_wins(self):
        url = build_subscription_url("abc", {"subURI": "https://x/sub/"}, "https://panel", "https://s.example.com/sub/")

        assert url == "https://s.example.com/sub/abc"

    def test_panel_sub_uri(self):
        assert build_subscription_url("abc", {"subURI": "https://s.example.com/s/"}, "") == \
            "https://s.example.com/s/abc"

    def test_sub_domain_with_tls(self):
        settings = {"subDomain": "sub.example.com", "subPort": 2096, "subPath": "feed",
                    "subKeyFile": "/k", "subCertFile": "/c"}

        assert build_subscription_url("abc", settings, "") == "https://sub.example.com:2096/feed/abc"

    def test_default_port_omitted(self):
        settings = {"subDomain": "sub.example.com", "subPort": 80}

        assert build_subscription_url("abc", settings, "") == "http://sub.example.com/sub/abc"

    def test_falls_back_to_panel_host(self):
        assert build_subscription_url("abc", {}, "https://panel.example.com:2053/base") == \
            "https://panel.example.com:2053/sub/abc"

    def test_empty_sub_id(self):
        with pytest.raises(ValueError):
            build_subscription_url("", {}, "https://panel")

    def test_normalize_sub_path(self):
        assert normalize_sub_path("") == "/sub/"
        assert normalize_sub_path("x") == "/x/"
