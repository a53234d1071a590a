"""User command handlers for Telegram bot."""

import logging
from telebot import TeleBot
from telebot.types import Message, CallbackQuery

from bot.keyboards.markups import (
    CB_EXT_DURATION,
    CB_EXTEND,
    CB_LINK,
    CB_REG_DURATION,
    CB_REGISTER,
    CB_RENAME,
    CB_STATUS,
    duration_keyboard,
    main_menu_keyboard,
)
from config.settings import PAYMENT_BANK, PAYMENT_PHONE, format_dt
from database.models import STATE_AWAITING_NEW_USERNAME, STATE_AWAITING_USERNAME
from message_templates import Messages, escape_md
from services.approval_service import (
    InvalidStateError,
    RequestPendingError,
    UnlimitedSubscriptionError,
    ValidationError,
)
from services.subscription_service import format_bytes, subscription_status
from vpn.xui_models import NotFoundError, TransientNetworkError

logger = logging.getLogger(__name__)


def user_error_text(error: Exception) -> str:
    """Message shown to a user for a failed action."""
    if isinstance(error, ValidationError):
        return str(error)
    if isinstance(error, RequestPendingError):
        return Messages.REQUEST_ALREADY_PENDING
    if isinstance(error, UnlimitedSubscriptionError):
        return Messages.EXTENSION_UNLIMITED
    if isinstance(error, InvalidStateError):
        return Messages.INVALID_STATE
    if isinstance(error, NotFoundError):
        return Messages.NOT_FOUND
    if isinstance(error, TransientNetworkError):
        return Messages.ERROR_PANEL_UNAVAILABLE
    return Messages.ERROR_GENERIC


def register_user_handlers(bot: TeleBot, services) -> None:
    """Register all user command handlers."""
    store = services.store
    clients = services.clients
    registration = services.registration
    extension = services.extension

    def request_sent_text(days: int, plans) -> str:
        price = plans.get(days)
        payment = ""
        if price and (PAYMENT_BANK or PAYMENT_PHONE):
            payment = Messages.PAYMENT_DETAILS.format(price=price, bank=PAYMENT_BANK, phone=PAYMENT_PHONE)
        return Messages.REQUEST_SENT.format(days=days, payment=payment)

    # === Start ===

    @bot.message_handler(commands=['start', 'menu'])
    def handle_start(message: Message):
        """Handle /start command - show the menu for registered or new users."""
        try:
            copies = clients.find_copies(message.from_user.id)
            if copies:
                bot.send_message(
                    message.chat.id,
                    Messages.WELCOME_REGISTERED.format(
                        username=escape_md(copies[0].record.canonical_username)),
                    reply_markup=main_menu_keyboard(registered=True),
                    parse_mode='Markdown'
                )
            else:
                bot.send_message(
                    message.chat.id,
                    Messages.WELCOME,
                    reply_markup=main_menu_keyboard(registered=False),
                    parse_mode='Markdown'
                )
        except Exception as e:
            logger.error(f"Error in /start handler: {e}", exc_info=True)
            bot.send_message(message.chat.id, user_error_text(e))

    # === Registration ===

    @bot.callback_query_handler(func=lambda call: call.data == CB_REGISTER)
    def handle_register(call: CallbackQuery):
        bot.answer_callback_query(call.id)
        try:
            registration.start(call.from_user)
            bot.send_message(call.message.chat.id, Messages.ASK_USERNAME, parse_mode='Markdown')
        except InvalidStateError:
            bot.send_message(call.message.chat.id, Messages.ALREADY_REGISTERED,
                             reply_markup=main_menu_keyboard(registered=True))
        except Exception as e:
            logger.error(f"Error starting registration for {call.from_user.id}: {e}", exc_info=True)
            bot.send_message(call.message.chat.id, user_error_text(e))

    @bot.message_handler(
        content_types=['text'],
        func=lambda m: not m.text.startswith('/')
        and store.get_user_state(m.from_user.id) == STATE_AWAITING_USERNAME
    )
    def handle_username(message: Message):
        try:
            request = registration.submit_username(message.from_user.id, message.text)
            bot.send_message(
                message.chat.id,
                Messages.ASK_DURATION.format(username=escape_md(request.username)),
                reply_markup=duration_keyboard(CB_REG_DURATION, registration.plans, registration.trial_days),
                parse_mode='Markdown'
            )
        except ValidationError as e:
            bot.send_message(message.chat.id, Messages.INVALID_USERNAME.format(reason=str(e)),
                             parse_mode='Markdown')
        except Exception as e:
            logger.error(f"Error handling username from {message.from_user.id}: {e}", exc_info=True)
            bot.send_message(message.chat.id, user_error_text(e))

    @bot.callback_query_handler(func=lambda call: call.data.startswith(CB_REG_DURATION))
    def handle_registration_duration(call: CallbackQuery):
        bot.answer_callback_query(call.id)
        try:
            days = int(call.data[len(CB_REG_DURATION):])
            job = registration.submit_duration(call.from_user.id, days)
            text = Messages.TRIAL_PROCESSING if job else request_sent_text(days, registration.plans)
            bot.edit_message_text(text, call.message.chat.id, call.message.message_id, parse_mode='Markdown')
        except Exception as e:
            logger.error(f"Error selecting registration duration for {call.from_user.id}: {e}", exc_info=True)
            bot.send_message(call.message.chat.id, user_error_text(e), parse_mode='Markdown')

    # === Status and link ===

    def send_status(chat_id: int, user_id: int):
        copies = clients.find_copies(user_id)
        if not copies:
            bot.send_message(chat_id, Messages.NOT_FOUND,
                             reply_markup=main_menu_keyboard(registered=False))
            return

        record = copies[0].record
        traffic = clients.get_traffic(user_id)
        used = format_bytes(traffic["total"])
        traffic_text = f"{used} / {format_bytes(record.total_gb)}" if record.total_gb else f"{used} (безлимит)"
        status_icon, status_text = subscription_status(record.expiry_time)
        expiry = format_dt(record.expiry_time) if record.expiry_time else Messages.EXPIRY_UNLIMITED

        text = Messages.STATUS.format(
            username=escape_md(record.canonical_username),
            status_icon=status_icon,
            status_text=status_text,
            expiry=expiry,
            traffic=traffic_text,
            devices=record.limit_ip or "∞",
            copies=len(copies),
        )
        if not record.enable:
            text += Messages.STATUS_DISABLED
        bot.send_message(chat_id, text, reply_markup=main_menu_keyboard(registered=True),
                         parse_mode='Markdown')

    def send_link(chat_id: int, user_id: int):
        record = clients.get_canonical(user_id)
        link = services.subscriptions.get_link(record.sub_id)
        bot.send_message(chat_id, Messages.LINK.format(link=link), parse_mode='Markdown')
        services.notifier.send_photo(chat_id, services.subscriptions.render_qr(link),
                                     caption=Messages.QR_CAPTION)

    @bot.message_handler(commands=['status'])
    def handle_status_command(message: Message):
        try:
            send_status(message.chat.id, message.from_user.id)
        except Exception as e:
            logger.error(f"Error in /status handler: {e}", exc_info=True)
            bot.send_message(message.chat.id, user_error_text(e))

    @bot.callback_query_handler(func=lambda call: call.data == CB_STATUS)
    def handle_status_callback(call: CallbackQuery):
        bot.answer_callback_query(call.id)
        try:
            send_status(call.message.chat.id, call.from_user.id)
        except Exception as e:
            logger.error(f"Error in status callback: {e}", exc_info=True)
            bot.send_message(call.message.chat.id, user_error_text(e))

    @bot.message_handler(commands=['link'])
    def handle_link_command(message: Message):
        try:
            send_link(message.chat.id, message.from_user.id)
        except Exception as e:
            logger.error(f"Error in /link handler: {e}", exc_info=True)
            bot.send_message(message.chat.id, user_error_text(e))

    @bot.callback_query_handler(func=lambda call: call.data == CB_LINK)
    def handle_link_callback(call: CallbackQuery):
        bot.answer_callback_query(call.id)
        try:
            send_link(call.message.chat.id, call.from_user.id)
        except Exception as e:
            logger.error(f"Error in link callback: {e}", exc_info=True)
            bot.send_message(call.message.chat.id, user_error_text(e))

    # === Extension ===

    def start_extension(chat_id: int, user):
        try:
            request, record = extension.start(user.id, user.username or "")
            bot.send_message(
                chat_id,
                Messages.EXTENSION_ASK_DURATION.format(
                    username=escape_md(request.username),
                    expiry=format_dt(record.expiry_time),
                ),
                reply_markup=duration_keyboard(CB_EXT_DURATION, extension.plans),
                parse_mode='Markdown'
            )
        except Exception as e:
            if not isinstance(e, (RequestPendingError, UnlimitedSubscriptionError, NotFoundError)):
                logger.error(f"Error starting extension for {user.id}: {e}", exc_info=True)
            bot.send_message(chat_id, user_error_text(e))

    @bot.message_handler(commands=['extend'])
    def handle_extend_command(message: Message):
        start_extension(message.chat.id, message.from_user)

    @bot.callback_query_handler(func=lambda call: call.data == CB_EXTEND)
    def handle_extend_callback(call: CallbackQuery):
        bot.answer_callback_query(call.id)
        start_extension(call.message.chat.id, call.from_user)

    @bot.callback_query_handler(func=lambda call: call.data.startswith(CB_EXT_DURATION))
    def handle_extension_duration(call: CallbackQuery):
        bot.answer_callback_query(call.id)
        try:
            days = int(call.data[len(CB_EXT_DURATION):])
            extension.submit_duration(call.from_user.id, days)
            bot.edit_message_text(request_sent_text(days, extension.plans),
                                  call.message.chat.id, call.message.message_id, parse_mode='Markdown')
        except Exception as e:
            logger.error(f"Error selecting extension duration for {call.from_user.id}: {e}", exc_info=True)
            bot.send_message(call.message.chat.id, user_error_text(e), parse_mode='Markdown')

    # === Rename ===

    @bot.callback_query_handler(func=lambda call: call.data == CB_RENAME)
    def handle_rename(call: CallbackQuery):
        bot.answer_callback_query(call.id)
        try:
            record = clients.get_canonical(call.from_user.id)
            store.set_user_state(call.from_user.id, STATE_AWAITING_NEW_USERNAME)
            bot.send_message(
                call.message.chat.id,
                Messages.ASK_NEW_USERNAME.format(username=escape_md(record.canonical_username)),
                parse_mode='Markdown'
            )
        except Exception as e:
            logger.error(f"Error starting rename for {call.from_user.id}: {e}", exc_info=True)
            bot.send_message(call.message.chat.id, user_error_text(e))

    @bot.message_handler(
        content_types=['text'],
        func=lambda m: not m.text.startswith('/')
        and store.get_user_state(m.from_user.id) == STATE_AWAITING_NEW_USERNAME
    )
    def handle_new_username(message: Message):
        user_id = message.from_user.id
        try:
            username = registration.validate_username(user_id, message.text)
            results = clients.rename(user_id, username)
            store.delete_user_state(user_id)

            failed = [r.inbound_id for r in results if not r.ok]
            if failed:
                bot.send_message(message.chat.id, Messages.RENAME_PARTIAL.format(
                    ok=len(results) - len(failed), total=len(results)))
                services.notifier.notify_admins(Messages.ADMIN_RENAME_PARTIAL.format(
                    user_id=user_id, username=escape_md(username),
                    failed=", ".join(str(i) for i in failed)))
            else:
                bot.send_message(message.chat.id,
                                 Messages.RENAME_DONE.format(username=escape_md(username)),
                                 reply_markup=main_menu_keyboard(registered=True),
                                 parse_mode='Markdown')
        except ValidationError as e:
            bot.send_message(message.chat.id, Messages.INVALID_USERNAME.format(reason=str(e)),
                             parse_mode='Markdown')
        except Exception as e:
            logger.error(f"Error renaming {user_id}: {e}", exc_info=True)
            store.delete_user_state(user_id)
            bot.send_message(message.chat.id, user_error_text(e))
