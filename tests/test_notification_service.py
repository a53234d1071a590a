"""Tests for message delivery and expiry reminders."""

from unittest.mock import Mock

import pytest

from services.client_service import ClientService
from services.notification_service import NotificationService
from services.subscription_service import MS_PER_DAY, MS_PER_HOUR

from conftest import vless_client

NOW = 1_750_000_000_000


@pytest.fixture
def bot():
    return Mock()


@pytest.fixture
def notifier(bot, panel, store):
    return NotificationService(bot, [1, 2], store=store, client_service=ClientService(panel),
                               warning_days=[7, 3, 1])


def seed(panel, *clients):
    panel.add_inbound(1, "vless", "DE", clients=list(clients))


class TestDelivery:
    def test_send_text_uses_markdown(self, notifier, bot):
        assert notifier.send_text(5, "*hi*") is True

        bot.send_message.assert_called_once_with(5, "*hi*", reply_markup=None, parse_mode="Markdown")

    def test_send_failure_is_reported(self, notifier, bot):
        bot.send_message.side_effect = Exception("blocked by user")

        assert notifier.send_text(5, "hi") is False

    def test_send_photo(self, notifier, bot):
        notifier.send_photo(5, b"\x89PNG", caption="QR")

        photo = bot.send_photo.call_args[0][1]
        assert photo.name == "qr.png"
        assert photo.getvalue() == b"\x89PNG"

    def test_notify_admins_counts_deliveries(self, notifier, bot):
        bot.send_message.side_effect = [None, Exception("chat not found")]

        assert notifier.notify_admins("hello") == 1
        assert bot.send_message.call_count == 2


class TestReminders:
    def test_reminder_sent_once(self, notifier, bot, panel):
        seed(panel, vless_client("alice::DE", 100, expiry=NOW + 2 * MS_PER_DAY + 12 * MS_PER_HOUR))

        first = notifier.check_and_send_reminders(NOW)
        second = notifier.check_and_send_reminders(NOW + MS_PER_HOUR)

        assert first["3d"] == 1
        assert second["3d"] == 0
        assert bot.send_message.call_count == 1
        assert bot.send_message.call_args[0][0] == 100
        assert bot.send_message.call_args[1]["reply_markup"] is not None

    def test_next_threshold_fires_later(self, notifier, panel):
        seed(panel, vless_client("alice::DE", 100, expiry=NOW + 2 * MS_PER_DAY + 12 * MS_PER_HOUR))
        notifier.check_and_send_reminders(NOW)

        later = notifier.check_and_send_reminders(NOW + 2 * MS_PER_DAY)

        assert later["1d"] == 1

    def test_extension_rearms(self, notifier, panel):
        seed(panel, vless_client("alice::DE", 100, expiry=NOW + 2 * MS_PER_DAY))
        notifier.check_and_send_reminders(NOW)
        panel.clients(1)[0]["expiryTime"] = NOW + 2 * MS_PER_DAY + MS_PER_HOUR

        assert notifier.check_and_send_reminders(NOW)["3d"] == 1

    def test_expired_notice(self, notifier, panel):
        seed(panel, vless_client("alice::DE", 100, expiry=NOW - MS_PER_HOUR))

        assert notifier.check_and_send_reminders(NOW)["expired"] == 1

    def test_skipped_accounts(self, notifier, bot, panel):
        seed(
            panel,
            vless_client("unlimited::DE", 100, expiry=0),
            vless_client("off::DE", 200, expiry=NOW + MS_PER_DAY, enable=False,
                         uuid="22222222-2222-2222-2222-222222222222"),
            vless_client("later::DE", 300, expiry=NOW + 30 * MS_PER_DAY,
                         uuid="33333333-3333-3333-3333-333333333333"),
        )

        counts = notifier.check_and_send_reminders(NOW)

        assert sum(counts.values()) == 0
        bot.send_message.assert_not_called()

    def test_failed_delivery_retried(self, notifier, bot, panel):
        seed(panel, vless_client("alice::DE", 100, expiry=NOW + 6 * MS_PER_DAY))
        bot.send_message.side_effect = Exception("timeout")

        assert notifier.check_and_send_reminders(NOW)["7d"] == 0

        bot.send_message.side_effect = None
        assert notifier.check_and_send_reminders(NOW)["7d"] == 1

    def test_panel_down(self, notifier, panel):
        panel.fail_list = True

        assert notifier.check_and_send_reminders(NOW) == {"1d": 0, "3d": 0, "7d": 0, "expired": 0}
