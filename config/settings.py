"""Configuration settings loader for the 3x-ui account bot."""

import os
from datetime import datetime, timezone
from typing import Dict, List
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == '':
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_int_list(name: str, default: str = '') -> List[int]:
    return [
        int(item.strip())
        for item in os.getenv(name, default).split(',')
        if item.strip()
    ]


# Bot Token
BOT_TOKEN = os.getenv('BOT_TOKEN', '')

# Admin (operator) Telegram IDs
ADMIN_IDS: List[int] = _env_int_list('ADMIN_IDS')

# 3x-ui panel
PANEL_URL = os.getenv('PANEL_URL', 'http://localhost:2053').rstrip('/')
PANEL_USERNAME = os.getenv('PANEL_USERNAME', 'admin')
PANEL_PASSWORD = os.getenv('PANEL_PASSWORD', 'admin')
PANEL_TIMEOUT = int(os.getenv('PANEL_TIMEOUT', '30'))
PANEL_VERIFY_TLS = _env_bool('PANEL_VERIFY_TLS', True)

# SQLite file for conversation state and traffic snapshots
DATABASE_PATH = os.getenv('DATABASE_PATH', '')

# Public subscription base URL; empty means "ask the panel"
SUBSCRIPTION_BASE_URL = os.getenv('SUBSCRIPTION_BASE_URL', '')

# Inbound that receives newly registered accounts (0 = first listed inbound)
REFERENCE_INBOUND_ID = int(os.getenv('REFERENCE_INBOUND_ID', '0'))

# Device limit for new accounts
DEVICE_LIMIT = int(os.getenv('DEVICE_LIMIT', '3'))

# Plans: duration in days -> price in rubles
PLANS: Dict[int, int] = {
    30: int(os.getenv('PRICE_ONE_MONTH', '150')),
    90: int(os.getenv('PRICE_THREE_MONTHS', '400')),
    180: int(os.getenv('PRICE_SIX_MONTHS', '750')),
    365: int(os.getenv('PRICE_ONE_YEAR', '1400')),
}

# Trial subscription
TRIAL_DAYS = int(os.getenv('TRIAL_DAYS', '3'))
AUTO_APPROVE_TRIAL = _env_bool('AUTO_APPROVE_TRIAL', False)

# Payment details shown to the user after a paid request
PAYMENT_BANK = os.getenv('PAYMENT_BANK', '')
PAYMENT_PHONE = os.getenv('PAYMENT_PHONE', '')
INSTRUCTIONS_URL = os.getenv('INSTRUCTIONS_URL', '')

# Multi-inbound identity sync
SYNC_ENABLED = _env_bool('SYNC_ENABLED', True)
SYNC_INTERVAL_HOURS = int(os.getenv('SYNC_INTERVAL_HOURS', '1'))

# Traffic forecast
SNAPSHOT_INTERVAL_HOURS = int(os.getenv('SNAPSHOT_INTERVAL_HOURS', '4'))
SNAPSHOT_RETENTION_DAYS = int(os.getenv('SNAPSHOT_RETENTION_DAYS', '30'))
TRAFFIC_LIMIT_GB = int(os.getenv('TRAFFIC_LIMIT_GB', '0'))
TRAFFIC_ALERT_THRESHOLD_GB = int(os.getenv('TRAFFIC_ALERT_THRESHOLD_GB', '0'))
TRAFFIC_ALERT_PERCENT = int(os.getenv('TRAFFIC_ALERT_PERCENT', '90'))

# Expiry reminders (days before expiry)
WARNING_DAYS: List[int] = _env_int_list('WARNING_DAYS', '7,3,1')

# Conversation states older than this are dropped (hours)
STATE_MAX_AGE_HOURS = int(os.getenv('STATE_MAX_AGE_HOURS', '24'))


def format_dt(expiry_ms: int, fmt: str = '%d.%m.%Y %H:%M') -> str:
    """Format an epoch-ms timestamp as UTC for display."""
    return datetime.fromtimestamp(expiry_ms / 1000, tz=timezone.utc).strftime(fmt) + ' UTC'
