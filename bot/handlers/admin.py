"""Admin (operator) handlers for Telegram bot."""

import logging
from telebot import TeleBot
from telebot.types import Message, CallbackQuery

from bot.keyboards.markups import (
    CB_APPROVE_EXT,
    CB_APPROVE_REG,
    CB_CLIENT,
    CB_DELETE,
    CB_DELETE_CONFIRM,
    CB_REJECT_EXT,
    CB_REJECT_REG,
    CB_TOGGLE,
    client_actions_keyboard,
    clients_list_keyboard,
    confirm_delete_keyboard,
    extension_decision_keyboard,
    registration_decision_keyboard,
)
from config.settings import ADMIN_IDS, format_dt
from database.models import REQ_PENDING
from message_templates import Messages, escape_md
from services.callback_registry import CallbackRegistry
from services.forecast_service import AGGREGATE, InsufficientDataError
from services.subscription_service import format_bytes, subscription_status
from vpn.xui_models import RequestNotFoundError

logger = logging.getLogger(__name__)


def is_admin(telegram_id: int) -> bool:
    """Check if user is an admin."""
    return telegram_id in ADMIN_IDS


def _error_text(error: Exception) -> str:
    return str(error).replace("`", "'")[:300]


def register_admin_handlers(bot: TeleBot, services) -> None:
    """Register operator commands and approval buttons."""
    clients = services.clients
    store = services.store

    # Short tokens for account buttons, scoped to this handler set
    registry = CallbackRegistry(max_size=500, ttl_seconds=3600)

    # === Approval decisions ===

    def decide(call: CallbackQuery, prefix: str, action, label: str):
        if not is_admin(call.from_user.id):
            bot.answer_callback_query(call.id, Messages.ADMIN_ONLY)
            return

        request_id = int(call.data[len(prefix):])
        bot.answer_callback_query(call.id, "⏳")
        try:
            action(request_id, call.from_user.id)
            bot.edit_message_reply_markup(call.message.chat.id, call.message.message_id, reply_markup=None)
        except RequestNotFoundError:
            bot.edit_message_reply_markup(call.message.chat.id, call.message.message_id, reply_markup=None)
            bot.send_message(call.message.chat.id, Messages.ADMIN_REQUEST_NOT_FOUND)
        except Exception as e:
            # Request stays pending; the buttons stay so the operator can retry
            logger.error(f"Failed to {label} request {request_id}: {e}", exc_info=True)
            bot.send_message(call.message.chat.id,
                             Messages.ADMIN_ACTION_FAILED.format(error=_error_text(e)),
                             parse_mode='Markdown')

    @bot.callback_query_handler(func=lambda call: call.data.startswith(CB_APPROVE_REG))
    def handle_approve_registration(call: CallbackQuery):
        decide(call, CB_APPROVE_REG, services.registration.approve, "approve registration")

    @bot.callback_query_handler(func=lambda call: call.data.startswith(CB_REJECT_REG))
    def handle_reject_registration(call: CallbackQuery):
        decide(call, CB_REJECT_REG, services.registration.reject, "reject registration")

    @bot.callback_query_handler(func=lambda call: call.data.startswith(CB_APPROVE_EXT))
    def handle_approve_extension(call: CallbackQuery):
        decide(call, CB_APPROVE_EXT, services.extension.approve, "approve extension")

    @bot.callback_query_handler(func=lambda call: call.data.startswith(CB_REJECT_EXT))
    def handle_reject_extension(call: CallbackQuery):
        decide(call, CB_REJECT_EXT, services.extension.reject, "reject extension")

    @bot.message_handler(commands=['pending'])
    def handle_pending(message: Message):
        """Re-send every pending request with its decision buttons."""
        if not is_admin(message.from_user.id):
            return
        try:
            registrations = store.list_registrations(REQ_PENDING)
            extensions = store.list_extensions(REQ_PENDING)
            if not registrations and not extensions:
                bot.send_message(message.chat.id, Messages.ADMIN_NO_PENDING)
                return

            bot.send_message(message.chat.id,
                             Messages.ADMIN_PENDING_HEADER.format(count=len(registrations) + len(extensions)))
            for request in registrations:
                bot.send_message(
                    message.chat.id,
                    Messages.ADMIN_NEW_REGISTRATION.format(
                        display_name=escape_md(request.display_name or "—"),
                        tg_username=escape_md(f"@{request.tg_username}") if request.tg_username else "—",
                        user_id=request.user_id,
                        username=escape_md(request.username or ""),
                        days=request.duration_days,
                    ),
                    reply_markup=registration_decision_keyboard(request.request_id),
                    parse_mode='Markdown'
                )
            for request in extensions:
                bot.send_message(
                    message.chat.id,
                    Messages.ADMIN_NEW_EXTENSION.format(
                        tg_username=escape_md(f"@{request.tg_username}") if request.tg_username else "—",
                        user_id=request.user_id,
                        username=escape_md(request.username or ""),
                        expiry="—",
                        days=request.duration_days,
                    ),
                    reply_markup=extension_decision_keyboard(request.request_id),
                    parse_mode='Markdown'
                )
        except Exception as e:
            logger.error(f"Error in /pending handler: {e}", exc_info=True)
            bot.send_message(message.chat.id, Messages.ERROR_GENERIC)

    # === Sync and forecast ===

    @bot.message_handler(commands=['sync'])
    def handle_sync(message: Message):
        """Run one identity sync cycle now."""
        if not is_admin(message.from_user.id):
            return
        try:
            bot.send_message(message.chat.id, Messages.ADMIN_SYNC_STARTED)
            report = services.sync.run()
            bot.send_message(message.chat.id, Messages.ADMIN_SYNC_RESULT.format(
                inbounds=report.inbound_count,
                users=report.user_count,
                created=report.created,
                failed=report.failed,
            ))
        except Exception as e:
            logger.error(f"Error in /sync handler: {e}", exc_info=True)
            bot.send_message(message.chat.id, Messages.ERROR_GENERIC)

    @bot.message_handler(commands=['forecast'])
    def handle_forecast(message: Message):
        """/forecast [inbound_id] - monthly traffic projection."""
        if not is_admin(message.from_user.id):
            return

        parts = message.text.split()
        target = AGGREGATE
        if len(parts) > 1 and parts[1].isdigit():
            target = int(parts[1])

        try:
            result = services.forecast.compute_forecast(target)
            bot.send_message(message.chat.id, services.forecast.format_forecast(result, target))
        except InsufficientDataError:
            target_text = (Messages.FORECAST_TARGET_TOTAL if target == AGGREGATE
                           else Messages.FORECAST_TARGET_INBOUND.format(inbound_id=target))
            bot.send_message(message.chat.id, Messages.FORECAST_NO_DATA.format(target=target_text))
        except Exception as e:
            logger.error(f"Error in /forecast handler: {e}", exc_info=True)
            bot.send_message(message.chat.id, Messages.ERROR_GENERIC)

    # === Accounts ===

    @bot.message_handler(commands=['clients'])
    def handle_clients(message: Message):
        """List accounts as buttons."""
        if not is_admin(message.from_user.id):
            return
        try:
            accounts = clients.list_accounts()
            if not accounts:
                bot.send_message(message.chat.id, Messages.ADMIN_NO_CLIENTS)
                return

            entries = []
            for account in accounts:
                icon, _ = subscription_status(account.expiry_time)
                if not account.enable:
                    icon = "⏸"
                entries.append((registry.register(account.tg_id), f"{icon} {account.username}"))

            bot.send_message(message.chat.id, Messages.ADMIN_CLIENTS_HEADER.format(count=len(accounts)),
                             reply_markup=clients_list_keyboard(entries))
        except Exception as e:
            logger.error(f"Error in /clients handler: {e}", exc_info=True)
            bot.send_message(message.chat.id, Messages.ERROR_GENERIC)

    def resolve(call: CallbackQuery, prefix: str):
        """tgId behind a button token, or None after answering the query."""
        if not is_admin(call.from_user.id):
            bot.answer_callback_query(call.id, Messages.ADMIN_ONLY)
            return None
        tg_id = registry.resolve(call.data[len(prefix):])
        if tg_id is None:
            bot.answer_callback_query(call.id, Messages.ADMIN_CLIENT_EXPIRED_LINK, show_alert=True)
            return None
        bot.answer_callback_query(call.id)
        return tg_id

    def show_client(chat_id: int, message_id: int, token: str, tg_id: int):
        copies = clients.find_copies(tg_id)
        if not copies:
            bot.edit_message_text(Messages.NOT_FOUND, chat_id, message_id)
            return

        record = copies[0].record
        status_icon, status_text = subscription_status(record.expiry_time)
        traffic = clients.get_traffic(tg_id)
        text = Messages.ADMIN_CLIENT_CARD.format(
            username=escape_md(record.canonical_username),
            user_id=tg_id,
            status_icon=status_icon,
            status_text=status_text,
            expiry=format_dt(record.expiry_time) if record.expiry_time else Messages.EXPIRY_UNLIMITED,
            traffic=format_bytes(traffic["total"]),
            copies=", ".join(f"#{c.inbound_id}" for c in copies),
            enabled="✅ Включён" if record.enable else "⏸ Отключён",
        )
        bot.edit_message_text(text, chat_id, message_id,
                              reply_markup=client_actions_keyboard(token, record.enable),
                              parse_mode='Markdown')

    @bot.callback_query_handler(func=lambda call: call.data.startswith(CB_CLIENT))
    def handle_client_card(call: CallbackQuery):
        tg_id = resolve(call, CB_CLIENT)
        if tg_id is None:
            return
        try:
            show_client(call.message.chat.id, call.message.message_id, call.data[len(CB_CLIENT):], tg_id)
        except Exception as e:
            logger.error(f"Error showing client {tg_id}: {e}", exc_info=True)
            bot.send_message(call.message.chat.id, Messages.ERROR_GENERIC)

    @bot.callback_query_handler(func=lambda call: call.data.startswith(CB_TOGGLE))
    def handle_toggle(call: CallbackQuery):
        tg_id = resolve(call, CB_TOGGLE)
        if tg_id is None:
            return
        token = call.data[len(CB_TOGGLE):]
        try:
            record = clients.get_canonical(tg_id)
            results = clients.set_enabled(tg_id, not record.enable)
            ok = sum(1 for r in results if r.ok)
            state = "▶️ Включён" if not record.enable else "⏸ Отключён"
            bot.send_message(call.message.chat.id, Messages.ADMIN_TOGGLED.format(
                state=state, username=escape_md(record.canonical_username), ok=ok, total=len(results)),
                parse_mode='Markdown')
            show_client(call.message.chat.id, call.message.message_id, token, tg_id)
        except Exception as e:
            logger.error(f"Error toggling client {tg_id}: {e}", exc_info=True)
            bot.send_message(call.message.chat.id, Messages.ADMIN_ACTION_FAILED.format(error=_error_text(e)),
                             parse_mode='Markdown')

    @bot.callback_query_handler(func=lambda call: call.data.startswith(CB_DELETE))
    def handle_delete(call: CallbackQuery):
        tg_id = resolve(call, CB_DELETE)
        if tg_id is None:
            return
        token = call.data[len(CB_DELETE):]
        try:
            record = clients.get_canonical(tg_id)
            bot.edit_message_text(
                Messages.ADMIN_CONFIRM_DELETE.format(username=escape_md(record.canonical_username)),
                call.message.chat.id, call.message.message_id,
                reply_markup=confirm_delete_keyboard(token),
                parse_mode='Markdown'
            )
        except Exception as e:
            logger.error(f"Error preparing delete of {tg_id}: {e}", exc_info=True)
            bot.send_message(call.message.chat.id, Messages.ERROR_GENERIC)

    @bot.callback_query_handler(func=lambda call: call.data.startswith(CB_DELETE_CONFIRM))
    def handle_delete_confirm(call: CallbackQuery):
        tg_id = resolve(call, CB_DELETE_CONFIRM)
        if tg_id is None:
            return
        try:
            record = clients.get_canonical(tg_id)
            results = clients.delete_everywhere(tg_id)
            ok = sum(1 for r in results if r.ok)
            if ok == len(results):
                registry.discard(call.data[len(CB_DELETE_CONFIRM):])
            bot.edit_message_text(
                Messages.ADMIN_DELETED.format(
                    username=escape_md(record.canonical_username), ok=ok, total=len(results)),
                call.message.chat.id, call.message.message_id,
                parse_mode='Markdown'
            )
            logger.info(f"Admin {call.from_user.id} deleted account {record.canonical_username} ({tg_id})")
        except Exception as e:
            logger.error(f"Error deleting client {tg_id}: {e}", exc_info=True)
            bot.send_message(call.message.chat.id, Messages.ADMIN_ACTION_FAILED.format(error=_error_text(e)),
                             parse_mode='Markdown')
