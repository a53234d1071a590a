"""Inline keyboard markup generators for Telegram bot."""

from typing import Dict, Optional

from telebot.types import InlineKeyboardMarkup, InlineKeyboardButton

# Callback data. Prefixes ending in ":" carry an argument.
CB_REGISTER = "register"
CB_STATUS = "status"
CB_LINK = "link"
CB_EXTEND = "extend"
CB_RENAME = "rename"
CB_REG_DURATION = "reg_dur:"
CB_EXT_DURATION = "ext_dur:"
CB_APPROVE_REG = "approve_reg:"
CB_REJECT_REG = "reject_reg:"
CB_APPROVE_EXT = "approve_ext:"
CB_REJECT_EXT = "reject_ext:"
CB_CLIENT = "client:"
CB_TOGGLE = "toggle:"
CB_DELETE = "delete:"
CB_DELETE_CONFIRM = "delete_ok:"


def main_menu_keyboard(registered: bool) -> InlineKeyboardMarkup:
    """
    Generate main menu keyboard.

    Unregistered users only get the registration button.
    """
    keyboard = InlineKeyboardMarkup(row_width=2)

    if not registered:
        keyboard.row(
            InlineKeyboardButton("📝 Зарегистрироваться", callback_data=CB_REGISTER)
        )
        return keyboard

    keyboard.row(
        InlineKeyboardButton("📊 Статус", callback_data=CB_STATUS),
        InlineKeyboardButton("🔗 Подписка", callback_data=CB_LINK)
    )
    keyboard.row(
        InlineKeyboardButton("⏳ Продлить", callback_data=CB_EXTEND),
        InlineKeyboardButton("✏️ Сменить имя", callback_data=CB_RENAME)
    )

    return keyboard


def duration_keyboard(prefix: str, plans: Dict[int, int], trial_days: Optional[int] = None) -> InlineKeyboardMarkup:
    """
    Generate plan selection keyboard.

    Args:
        prefix: CB_REG_DURATION or CB_EXT_DURATION
        plans: Duration in days -> price
        trial_days: Adds a trial button when set (first registration only)
    """
    keyboard = InlineKeyboardMarkup(row_width=1)

    if trial_days:
        keyboard.add(
            InlineKeyboardButton(f"🎁 Пробный период ({trial_days} дн.)", callback_data=f"{prefix}{trial_days}")
        )

    for days, price in sorted(plans.items()):
        keyboard.add(
            InlineKeyboardButton(f"📅 {days} дн. — {price} ₽", callback_data=f"{prefix}{days}")
        )

    return keyboard


def registration_decision_keyboard(request_id: int) -> InlineKeyboardMarkup:
    """Approve/reject buttons for a registration request (operators)."""
    keyboard = InlineKeyboardMarkup(row_width=2)
    keyboard.row(
        InlineKeyboardButton("✅ Одобрить", callback_data=f"{CB_APPROVE_REG}{request_id}"),
        InlineKeyboardButton("❌ Отклонить", callback_data=f"{CB_REJECT_REG}{request_id}")
    )
    return keyboard


def extension_decision_keyboard(request_id: int) -> InlineKeyboardMarkup:
    """Approve/reject buttons for an extension request (operators)."""
    keyboard = InlineKeyboardMarkup(row_width=2)
    keyboard.row(
        InlineKeyboardButton("✅ Продлить", callback_data=f"{CB_APPROVE_EXT}{request_id}"),
        InlineKeyboardButton("❌ Отклонить", callback_data=f"{CB_REJECT_EXT}{request_id}")
    )
    return keyboard


def extend_keyboard() -> InlineKeyboardMarkup:
    """Single "extend" button attached to expiry reminders."""
    keyboard = InlineKeyboardMarkup()
    keyboard.add(InlineKeyboardButton("⏳ Продлить подписку", callback_data=CB_EXTEND))
    return keyboard


def clients_list_keyboard(entries) -> InlineKeyboardMarkup:
    """
    One button per account.

    Args:
        entries: Iterable of (token, label) pairs
    """
    keyboard = InlineKeyboardMarkup(row_width=1)
    for token, label in entries:
        keyboard.add(InlineKeyboardButton(label, callback_data=f"{CB_CLIENT}{token}"))
    return keyboard


def client_actions_keyboard(token: str, enabled: bool) -> InlineKeyboardMarkup:
    """Enable/disable and delete buttons for one account (operators)."""
    keyboard = InlineKeyboardMarkup(row_width=2)
    toggle_text = "⏸ Отключить" if enabled else "▶️ Включить"
    keyboard.row(
        InlineKeyboardButton(toggle_text, callback_data=f"{CB_TOGGLE}{token}"),
        InlineKeyboardButton("🗑 Удалить", callback_data=f"{CB_DELETE}{token}")
    )
    return keyboard


def confirm_delete_keyboard(token: str) -> InlineKeyboardMarkup:
    keyboard = InlineKeyboardMarkup(row_width=2)
    keyboard.row(
        InlineKeyboardButton("⚠️ Да, удалить везде", callback_data=f"{CB_DELETE_CONFIRM}{token}"),
        InlineKeyboardButton("Отмена", callback_data=f"{CB_CLIENT}{token}")
    )
    return keyboard
