"""Bot initialization and handler registration for the 3x-ui account bot."""

import logging
from telebot import TeleBot

from config.settings import BOT_TOKEN

logger = logging.getLogger(__name__)


def create_bot(token: str = BOT_TOKEN) -> TeleBot:
    """Create the bot instance."""
    if not token:
        raise ValueError(
            "BOT_TOKEN not found in environment variables. "
            "Set BOT_TOKEN in .env file or environment before starting the bot."
        )
    return TeleBot(token, parse_mode='Markdown')


def register_handlers(bot: TeleBot, services) -> None:
    """Register all bot handlers."""
    # Import here to avoid circular dependency (services use bot.keyboards)
    from bot.handlers.user import register_user_handlers
    from bot.handlers.admin import register_admin_handlers

    logger.info("Registering bot handlers...")

    # Admin commands first so they are not swallowed by the free-text handler
    register_admin_handlers(bot, services)
    register_user_handlers(bot, services)

    logger.info("All handlers registered successfully")


def start_polling(bot: TeleBot) -> None:
    """Start bot polling loop (blocks until stop_polling)."""
    logger.info("Starting bot polling...")
    try:
        bot.infinity_polling(
            timeout=60,
            long_polling_timeout=60,
            allowed_updates=["message", "callback_query"]
        )
    except KeyboardInterrupt:
        logger.info("Bot stopped by user")
    except Exception as e:
        logger.error(f"Error in bot polling: {e}", exc_info=True)
        raise
