"""Tests for the multi-inbound identity sync."""

import pytest

from services.identity_sync import IdentitySyncEngine, collect_users
from conftest import vless_client


@pytest.fixture
def engine(panel):
    return IdentitySyncEngine(panel)


def seed_three_inbounds(panel):
    panel.add_inbound(1, "vless", "Germany", clients=[
        vless_client("alice::Germany", 100, sub_id="alicesub00000001", expiry=1735689600000),
    ])
    panel.add_inbound(2, "trojan", "Netherlands")
    panel.add_inbound(3, "vmess", "")


class TestCollectUsers:
    def test_first_occurrence_wins(self, panel):
        panel.add_inbound(1, "vless", "A", clients=[vless_client("alice::A", 100, expiry=111)])
        panel.add_inbound(2, "vless", "B", clients=[
            vless_client("alice2::B", 100, expiry=222, uuid="22222222-2222-2222-2222-222222222222"),
        ])

        users = collect_users(panel.list_inbounds())

        account = users[100]
        assert account.username == "alice"
        assert account.expiry_time == 111
        assert account.source_inbound_id == 1
        assert set(account.copies) == {1, 2}

    def test_ignores_records_without_owner(self, panel):
        panel.add_inbound(1, "vless", "A", clients=[vless_client("orphan", 0)])

        assert collect_users(panel.list_inbounds()) == {}


class TestSyncCycle:
    def test_creates_missing_copies(self, panel, engine):
        seed_three_inbounds(panel)

        report = engine.run()

        assert report.created == 2
        assert report.failed == 0
        trojan = panel.clients(2)[0]
        vmess = panel.clients(3)[0]
        assert trojan["email"] == "alice::Netherlands"
        assert vmess["email"] == "alice::inbound3"
        for copy in (trojan, vmess):
            assert copy["tgId"] == 100
            assert copy["subId"] == "alicesub00000001"
            assert copy["expiryTime"] == 1735689600000
            assert copy["enable"] is True
        assert trojan["password"]
        assert "id" not in trojan
        assert vmess["id"] != panel.clients(1)[0]["id"]

    def test_every_user_present_everywhere(self, panel, engine):
        panel.add_inbound(1, "vless", "A", clients=[vless_client("alice::A", 100, sub_id="s1")])
        panel.add_inbound(2, "vless", "B", clients=[
            vless_client("bob::B", 200, sub_id="s2", uuid="22222222-2222-2222-2222-222222222222"),
        ])

        engine.run()

        for inbound_id in (1, 2):
            owners = {c["tgId"]: c["subId"] for c in panel.clients(inbound_id)}
            assert owners == {100: "s1", 200: "s2"}

    def test_second_run_is_noop(self, panel, engine):
        seed_three_inbounds(panel)
        engine.run()
        calls = len(panel.add_calls)

        report = engine.run()

        assert report.results == []
        assert len(panel.add_calls) == calls
        assert report.user_count == 1

    def test_existing_copy_is_not_touched(self, panel, engine):
        original = vless_client("alice::A", 100, comment="vip", customField={"x": 1})
        panel.add_inbound(1, "vless", "A", clients=[original])
        panel.add_inbound(2, "vless", "B")

        engine.run()

        assert panel.clients(1) == [original]
        assert panel.update_calls == []

    def test_partial_failure_continues(self, panel, engine):
        seed_three_inbounds(panel)
        panel.fail_add.add(2)

        report = engine.run()

        assert report.created == 1
        assert report.failed == 1
        failure = report.failures[0]
        assert failure.inbound_id == 2
        assert failure.error.tg_id == 100
        assert len(panel.clients(3)) == 1

        panel.fail_add.clear()
        retry = engine.run()

        assert retry.created == 1
        assert len(panel.clients(2)) == 1

    def test_malformed_inbound_skipped(self, panel, engine):
        panel.add_inbound(1, "vless", "A", clients=[vless_client("alice::A", 100)])
        panel.add_inbound(2, "vless", "Broken")
        panel.inbounds[2]["raw"] = "{not json"
        panel.add_inbound(3, "vless", "C")

        report = engine.run()

        assert report.failed == 0
        assert [r.inbound_id for r in report.results] == [3]
        assert 2 not in [inbound_id for inbound_id, _ in panel.add_calls]

    def test_non_client_protocol_skipped(self, panel, engine):
        panel.add_inbound(1, "vless", "A", clients=[vless_client("alice::A", 100)])
        panel.add_inbound(2, "dokodemo-door", "Tunnel")

        report = engine.run()

        assert report.results == []

    def test_listing_failure_gives_empty_report(self, panel, engine):
        panel.fail_list = True

        report = engine.run()

        assert report.inbound_count == 0
        assert report.results == []

    def test_shadowsocks_copy_inherits_method(self, panel, engine):
        panel.add_inbound(1, "vless", "A", clients=[vless_client("alice::A", 100)])
        panel.add_inbound(2, "shadowsocks", "SS", method="chacha20-ietf-poly1305")

        engine.run()

        copy = panel.clients(2)[0]
        assert copy["method"] == "chacha20-ietf-poly1305"
        assert copy["email"] == "alice::SS"
