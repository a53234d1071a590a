"""Configuration package for the 3x-ui account bot."""

from .settings import (
    BOT_TOKEN,
    ADMIN_IDS,
    PANEL_URL,
    DATABASE_PATH,
    PLANS,
    format_dt,
)

__all__ = [
    'BOT_TOKEN',
    'ADMIN_IDS',
    'PANEL_URL',
    'DATABASE_PATH',
    'PLANS',
    'format_dt',
]
