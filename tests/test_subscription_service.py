"""Tests for subscription links, QR codes and expiry helpers."""

from unittest.mock import Mock

from services.subscription_service import (
    MS_PER_DAY,
    MS_PER_HOUR,
    SubscriptionService,
    extend_expiry,
    format_bytes,
    subscription_status,
    time_remaining,
)
from vpn.xui_models import XUIError

NOW = 1_750_000_000_000


class TestLinks:
    def test_configured_base_skips_panel(self):
        gateway = Mock()
        service = SubscriptionService(gateway, "https://panel.example.com", "https://s.example.com/sub/")

        assert service.get_link("abc") == "https://s.example.com/sub/abc"
        gateway.get_panel_settings.assert_not_called()

    def test_panel_settings_cached(self):
        gateway = Mock()
        gateway.get_panel_settings.return_value = {"subURI": "https://s.example.com/feed/"}
        service = SubscriptionService(gateway, "https://panel.example.com")

        service.get_link("a")
        link = service.get_link("b")

        assert link == "https://s.example.com/feed/b"
        gateway.get_panel_settings.assert_called_once()

    def test_panel_error_falls_back_without_caching(self):
        gateway = Mock()
        gateway.get_panel_settings.side_effect = [XUIError("down"), {"subURI": "https://s.example.com/x/"}]
        service = SubscriptionService(gateway, "https://panel.example.com:2053")

        assert service.get_link("a") == "https://panel.example.com:2053/sub/a"
        assert service.get_link("a") == "https://s.example.com/x/a"

    def test_qr_is_png(self):
        png = SubscriptionService.render_qr("https://s.example.com/sub/abc")

        assert png.startswith(b"\x89PNG")


class TestExpiryHelpers:
    def test_time_remaining(self):
        assert time_remaining(NOW + 2 * MS_PER_DAY + 5 * MS_PER_HOUR, NOW) == (2, 5)
        assert time_remaining(0, NOW) == (0, 0)
        assert time_remaining(NOW - 1, NOW) == (0, 0)

    def test_status_levels(self):
        assert subscription_status(0, NOW)[0] == "♾️"
        assert subscription_status(NOW, NOW)[0] == "⛔"
        assert subscription_status(NOW + MS_PER_DAY, NOW)[0] == "🔴"
        assert subscription_status(NOW + 5 * MS_PER_DAY, NOW)[0] == "⚠️"
        assert subscription_status(NOW + 30 * MS_PER_DAY, NOW)[0] == "✅"

    def test_extend_keeps_remaining_time(self):
        assert extend_expiry(NOW + 5 * MS_PER_DAY, 30, NOW) == NOW + 35 * MS_PER_DAY

    def test_extend_expired_restarts(self):
        assert extend_expiry(NOW - 10 * MS_PER_DAY, 30, NOW) == NOW + 30 * MS_PER_DAY

    def test_format_bytes(self):
        assert format_bytes(512) == "512 B"
        assert format_bytes(1536) == "1.50 KB"
        assert format_bytes(3 * 1024 ** 3) == "3.00 GB"
        assert format_bytes(2 * 1024 ** 4) == "2.00 TB"
