"""Subscription link, QR code and status helpers."""

import io
import logging
import time
from typing import Optional, Tuple

import qrcode

from vpn.xui_models import XUIError
from vpn.xui_uri_builder import build_subscription_url

logger = logging.getLogger(__name__)

MS_PER_HOUR = 3600 * 1000
MS_PER_DAY = 24 * MS_PER_HOUR


class SubscriptionService:
    """Resolves public subscription links and renders them for users."""

    def __init__(self, gateway, panel_url: str, base_url: str = ""):
        """Initialize the service.

        Args:
            gateway: PanelGateway used to read the panel's subscription settings
            panel_url: Panel base URL, last-resort host for links
            base_url: Configured public subscription prefix; skips the panel lookup
        """
        self.gateway = gateway
        self.panel_url = panel_url
        self.base_url = base_url
        self._panel_settings: Optional[dict] = None

    def _get_panel_settings(self) -> dict:
        if self._panel_settings is None:
            try:
                self._panel_settings = self.gateway.get_panel_settings()
            except XUIError as e:
                # Not cached, so the next link asks the panel again
                logger.warning(f"Could not read panel subscription settings: {e}")
                return {}
        return self._panel_settings

    def get_link(self, sub_id: str) -> str:
        """Public subscription URL for a subscription ID.

        Raises:
            ValueError: If ``sub_id`` is empty
        """
        panel_settings = {} if self.base_url else self._get_panel_settings()
        return build_subscription_url(sub_id, panel_settings, self.panel_url, self.base_url)

    @staticmethod
    def render_qr(link: str) -> bytes:
        """PNG image of a QR code encoding ``link``."""
        qr = qrcode.QRCode(
            version=1,
            error_correction=qrcode.constants.ERROR_CORRECT_L,
            box_size=10,
            border=4,
        )
        qr.add_data(link)
        qr.make(fit=True)
        img = qr.make_image(fill_color="black", back_color="white")

        bio = io.BytesIO()
        img.save(bio, "PNG")
        return bio.getvalue()


def now_ms() -> int:
    return int(time.time() * 1000)


def time_remaining(expiry_time: int, now: Optional[int] = None) -> Tuple[int, int]:
    """Whole days and leftover hours until ``expiry_time`` (epoch ms).

    Unlimited (0) and already expired subscriptions give (0, 0).
    """
    if expiry_time == 0:
        return 0, 0
    remaining = expiry_time - (now_ms() if now is None else now)
    if remaining <= 0:
        return 0, 0
    return remaining // MS_PER_DAY, (remaining % MS_PER_DAY) // MS_PER_HOUR


def subscription_status(expiry_time: int, now: Optional[int] = None) -> Tuple[str, str]:
    """Status icon and text for an expiry timestamp."""
    if expiry_time == 0:
        return "♾️", "Безлимитная"

    current = now_ms() if now is None else now
    if expiry_time <= current:
        return "⛔", "Истекла"

    days, hours = time_remaining(expiry_time, current)
    if days < 3:
        return "🔴", f"{days} дн. {hours} ч. (критично!)"
    if days < 7:
        return "⚠️", f"{days} дн. {hours} ч."
    return "✅", f"{days} дн. {hours} ч."


def format_bytes(num_bytes: int) -> str:
    """Human-readable size with binary units."""
    value = float(num_bytes)
    if value < 1024:
        return f"{int(num_bytes)} B"
    for unit in ("KB", "MB", "GB"):
        value /= 1024
        if value < 1024:
            return f"{value:.2f} {unit}"
    return f"{value / 1024:.2f} TB"


def extend_expiry(current_expiry: int, days: int, now: Optional[int] = None) -> int:
    """New expiry after adding ``days``.

    Remaining time is kept; an expired subscription restarts from now.
    """
    base = max(current_expiry, now_ms() if now is None else now)
    return base + days * MS_PER_DAY
