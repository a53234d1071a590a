"""Tests for the client record codec."""

import json
import uuid

import pytest

from vpn.client_record import (
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
from vpn.xui_models import MalformedConfigError, ParseError


RAW_CLIENT = {
    "id": "2b7c1f5e-4a1d-4c4b-9a53-0d8d6f1c2e3a",
    "flow": "xtls-rprx-vision",
    "email": "alice::Germany",
    "limitIp": 3,
    "totalGB": 0,
    "expiryTime": 1735689600000,
    "enable": True,
    "tgId": 12345,
    "subId": "abcdefgh12345678",
    "comment": "paid",
    "reset": 0,
    "created_at": 1730000000000,
    "customField": {"nested": [1, 2]},
}


class TestDecode:
    def test_known_fields(self):
        record = decode_client(RAW_CLIENT)

        assert record.email == "alice::Germany"
        assert record.uuid == RAW_CLIENT["id"]
        assert record.password is None
        assert record.sub_id == "abcdefgh12345678"
        assert record.enable is True
        assert record.expiry_time == 1735689600000
        assert record.tg_id == 12345
        assert record.limit_ip == 3
        assert record.canonical_username == "alice"

    def test_unknown_fields_go_to_extra(self):
        record = decode_client(RAW_CLIENT)

        assert record.extra["flow"] == "xtls-rprx-vision"
        assert record.extra["comment"] == "paid"
        assert record.extra["customField"] == {"nested": [1, 2]}
        assert "email" not in record.extra

    def test_numeric_strings_and_empty_values(self):
        record = decode_client({"email": "bob", "tgId": "777", "expiryTime": "", "limitIp": None})

        assert record.tg_id == 777
        assert record.expiry_time == 0
        assert record.limit_ip == 0

    def test_float_numbers(self):
        record = decode_client({"email": "bob", "tgId": 1.23456789e8, "expiryTime": 1.7356896e12})

        assert record.tg_id == 123456789
        assert isinstance(record.expiry_time, int)

    def test_non_object_entry(self):
        with pytest.raises(ParseError):
            decode_client(["not", "a", "dict"])


class TestEncode:
    def test_round_trip_unchanged(self):
        record = decode_client(RAW_CLIENT)

        assert encode_client(record) == RAW_CLIENT

    def test_toggle_enable_touches_only_enable(self):
        record = decode_client(RAW_CLIENT)
        record.enable = False

        encoded = encode_client(record)

        assert encoded["enable"] is False
        assert {k: v for k, v in encoded.items() if k != "enable"} == \
            {k: v for k, v in RAW_CLIENT.items() if k != "enable"}
        assert list(encoded.keys()) == list(RAW_CLIENT.keys())

    def test_float_fields_normalized_to_int(self):
        raw = dict(RAW_CLIENT, expiryTime=1.7356896e12, totalGB=0.0, tgId=12345.0, reset=0.0)
        record = decode_client(raw)

        encoded = encode_client(record)
        text = json.dumps(encoded)

        assert encoded["expiryTime"] == 1735689600000
        assert isinstance(encoded["expiryTime"], int)
        assert isinstance(encoded["reset"], int)
        assert "e+" not in text

    def test_unchanged_string_tg_id_kept_verbatim(self):
        raw = {"email": "bob", "id": "u", "tgId": "777", "enable": True}
        record = decode_client(raw)

        assert encode_client(record)["tgId"] == "777"

    def test_changed_field_rewritten_typed(self):
        record = decode_client(dict(RAW_CLIENT, tgId=""))
        record.tg_id = 42

        assert encode_client(record)["tgId"] == 42

    def test_new_extra_appended(self):
        record = decode_client(RAW_CLIENT)
        record.extra["note"] = "x"

        encoded = encode_client(record)

        assert encoded["note"] == "x"
        assert encoded["customField"] == {"nested": [1, 2]}

    def test_record_without_original(self):
        record = ClientRecord(email="carol", password="secret", sub_id="s", tg_id=5,
                              extra={"method": "aes-256-gcm"})

        encoded = encode_client(record)

        assert encoded["email"] == "carol"
        assert encoded["password"] == "secret"
        assert encoded["method"] == "aes-256-gcm"
        assert "id" not in encoded


class TestSettings:
    def test_decode_settings(self):
        settings_json = json.dumps({"clients": [RAW_CLIENT], "decryption": "none"})

        settings, records = decode_settings(settings_json)

        assert settings["decryption"] == "none"
        assert len(records) == 1
        assert records[0].email == "alice::Germany"

    def test_empty_settings(self):
        assert decode_settings("") == ({}, [])

    def test_missing_clients(self):
        settings, records = decode_settings('{"method": "aes-256-gcm"}')

        assert records == []
        assert settings["method"] == "aes-256-gcm"

    @pytest.mark.parametrize("bad", ["{not json", "[1, 2]", '{"clients": {"a": 1}}'])
    def test_malformed(self, bad):
        with pytest.raises(ParseError):
            decode_settings(bad)

    def test_parse_error_is_malformed_config(self):
        with pytest.raises(MalformedConfigError):
            decode_settings("{not json")

    def test_encode_settings(self):
        record = decode_client(RAW_CLIENT)

        payload = json.loads(encode_settings([record]))

        assert payload == {"clients": [RAW_CLIENT]}


class TestHelpers:
    def test_canonical_username(self):
        assert canonical_username("alice::Germany") == "alice"
        assert canonical_username("alice") == "alice"

    def test_inbound_email(self):
        assert inbound_email("alice", "Germany", 3) == "alice::Germany"
        assert inbound_email("alice", "", 3) == "alice::inbound3"

    def test_rename_email_keeps_suffix(self):
        assert rename_email("alice::Germany", "bob") == "bob::Germany"
        assert rename_email("alice", "bob") == "bob"

    def test_sub_id_format(self):
        sub_id = generate_sub_id()

        assert len(sub_id) == 16
        assert sub_id.isalnum()
        assert sub_id == sub_id.lower()

    def test_vless_credential(self):
        cred = new_credential("vless")

        uuid.UUID(cred["uuid"])
        assert cred["extra"] == {"flow": ""}

    def test_vmess_credential(self):
        cred = new_credential("vmess")

        uuid.UUID(cred["uuid"])
        assert cred["extra"]["alterId"] == 0

    def test_trojan_credential(self):
        cred = new_credential("trojan")

        assert len(cred["password"]) == 16
        assert "uuid" not in cred

    def test_shadowsocks_inherits_method(self):
        cred = new_credential("shadowsocks", {"method": "chacha20-ietf-poly1305"})

        assert cred["extra"]["method"] == "chacha20-ietf-poly1305"
        assert cred["password"]

    def test_credentials_are_independent(self):
        assert new_credential("vless")["uuid"] != new_credential("vless")["uuid"]

    def test_build_record(self):
        record = build_record("trojan", "alice::NL", "sub", 7, 1000, limit_ip=3)

        assert record.password and record.uuid is None
        assert record.client_key("trojan") == record.password
        assert record.tg_id == 7
        assert record.extra["reset"] == 0

    def test_client_key_by_protocol(self):
        record = ClientRecord(email="a::b", uuid="u", password="p")

        assert record.client_key("vless") == "u"
        assert record.client_key("vmess") == "u"
        assert record.client_key("trojan") == "p"
        assert record.client_key("shadowsocks") == "a::b"
