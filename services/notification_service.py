"""Telegram delivery for users and operators, and expiry reminders."""

import io
import logging
from typing import Dict, Iterable, List, Optional

from telebot import TeleBot

from bot.keyboards.markups import extend_keyboard
from config.settings import WARNING_DAYS, format_dt
from message_templates import Messages, escape_md, pluralize_days
from vpn.xui_models import XUIError

from .subscription_service import MS_PER_DAY, now_ms

logger = logging.getLogger(__name__)


class NotificationService:
    """Sends messages through the bot; delivery failures are logged, not raised."""

    def __init__(self, bot: TeleBot, admin_ids: Iterable[int], store=None, client_service=None,
                 warning_days: Optional[List[int]] = None):
        self.bot = bot
        self.admin_ids = list(admin_ids)
        self.store = store
        self.client_service = client_service
        self.warning_days = sorted(warning_days if warning_days is not None else WARNING_DAYS)

    # === Delivery ===

    def send_text(self, chat_id: int, text: str, reply_markup=None) -> bool:
        try:
            self.bot.send_message(chat_id, text, reply_markup=reply_markup, parse_mode='Markdown')
            return True
        except Exception as e:
            logger.error(f"Failed to send message to {chat_id}: {e}")
            return False

    def send_photo(self, chat_id: int, png: bytes, caption: Optional[str] = None) -> bool:
        try:
            photo = io.BytesIO(png)
            photo.name = "qr.png"
            self.bot.send_photo(chat_id, photo, caption=caption)
            return True
        except Exception as e:
            logger.error(f"Failed to send photo to {chat_id}: {e}")
            return False

    def notify_admins(self, text: str, reply_markup=None) -> int:
        """Send ``text`` to every operator. Returns how many got it."""
        sent = 0
        for admin_id in self.admin_ids:
            if self.send_text(admin_id, text, reply_markup=reply_markup):
                sent += 1
        return sent

    # === Expiry reminders ===

    def _threshold_for(self, days_left: float) -> Optional[int]:
        """Smallest warning threshold that ``days_left`` has reached."""
        for days in self.warning_days:
            if days_left <= days:
                return days
        return None

    def check_and_send_reminders(self, now: Optional[int] = None) -> Dict[str, int]:
        """
        Check every account with a finite expiry and send due reminders.

        Each (user, expiry, threshold) is sent once; extending the subscription
        changes the expiry and so re-arms all reminders. Threshold 0 is the
        "expired" notice.

        Returns:
            Dictionary with counts of sent notifications, keyed like "7d" and "expired"
        """
        current = now_ms() if now is None else now
        sent_counts = {f"{d}d": 0 for d in self.warning_days}
        sent_counts["expired"] = 0

        try:
            accounts = self.client_service.list_accounts()
        except XUIError as e:
            logger.error(f"Reminders: failed to list accounts: {e}")
            return sent_counts

        for account in accounts:
            if account.expiry_time == 0 or not account.enable:
                continue

            days_left = (account.expiry_time - current) / MS_PER_DAY
            threshold = 0 if days_left <= 0 else self._threshold_for(days_left)
            if threshold is None:
                continue
            if self.store.was_expiry_notified(account.tg_id, account.expiry_time, threshold):
                continue

            username = escape_md(account.username)
            expiry = format_dt(account.expiry_time)
            if threshold == 0:
                text = Messages.SUBSCRIPTION_EXPIRED.format(username=username, expiry=expiry)
            else:
                shown = max(1, int(days_left))
                text = Messages.RENEWAL_REMINDER.format(
                    username=username, expiry=expiry, days_left=shown, days_word=pluralize_days(shown)
                )

            if not self.send_text(account.tg_id, text, reply_markup=extend_keyboard()):
                continue
            self.store.mark_expiry_notified(account.tg_id, account.expiry_time, threshold)
            sent_counts["expired" if threshold == 0 else f"{threshold}d"] += 1
            logger.info(f"Sent {threshold}d expiry reminder to {account.tg_id} ({account.username})")

        return sent_counts
