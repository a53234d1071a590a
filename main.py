"""Main entry point for the 3x-ui account bot."""

import logging
import signal
import sys
from datetime import timedelta

from apscheduler.schedulers.background import BackgroundScheduler

from bot import create_bot, register_handlers, start_polling
from config.settings import (
    SNAPSHOT_INTERVAL_HOURS,
    STATE_MAX_AGE_HOURS,
    SYNC_ENABLED,
    SYNC_INTERVAL_HOURS,
)
from database import init_db
from services.container import Services, build_services


def setup_logging():
    """Configure logging for the application."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler('xui_account_bot.log', encoding='utf-8')
        ]
    )


def identity_sync_job(services: Services):
    """Periodic job: create missing per-inbound copies of every account."""
    logger = logging.getLogger(__name__)
    try:
        report = services.sync.run()
        for failure in report.failures:
            logger.warning(f"Sync pair failed: tgId={failure.tg_id} inbound={failure.inbound_id}")
    except Exception as e:
        logger.error(f"Error in identity sync job: {e}", exc_info=True)


def snapshot_job(services: Services):
    """Periodic job: store traffic snapshots and evaluate forecast alerts."""
    logger = logging.getLogger(__name__)
    try:
        services.forecast.collect_snapshots()
    except Exception as e:
        logger.error(f"Error in snapshot job: {e}", exc_info=True)


def cleanup_job(services: Services):
    """Periodic job: drop old snapshots and abandoned conversations."""
    logger = logging.getLogger(__name__)
    try:
        services.forecast.cleanup_snapshots()
        services.store.cleanup_expired_states(timedelta(hours=STATE_MAX_AGE_HOURS))
    except Exception as e:
        logger.error(f"Error in cleanup job: {e}", exc_info=True)


def reminders_job(services: Services):
    """Periodic job: send expiry reminders."""
    logger = logging.getLogger(__name__)
    try:
        sent_counts = services.notifier.check_and_send_reminders()
        if sum(sent_counts.values()) > 0:
            logger.info(f"Expiry reminders sent: {sent_counts}")
    except Exception as e:
        logger.error(f"Error in reminders job: {e}", exc_info=True)


def create_scheduler(services: Services) -> BackgroundScheduler:
    """One independent interval job per periodic engine."""
    scheduler = BackgroundScheduler(timezone="UTC")
    if SYNC_ENABLED:
        scheduler.add_job(identity_sync_job, 'interval', hours=SYNC_INTERVAL_HOURS,
                          args=[services], id='identity_sync', max_instances=1, coalesce=True)
    scheduler.add_job(snapshot_job, 'interval', hours=SNAPSHOT_INTERVAL_HOURS,
                      args=[services], id='traffic_snapshots', max_instances=1, coalesce=True)
    scheduler.add_job(cleanup_job, 'interval', hours=24,
                      args=[services], id='cleanup', max_instances=1, coalesce=True)
    scheduler.add_job(reminders_job, 'interval', hours=1,
                      args=[services], id='expiry_reminders', max_instances=1, coalesce=True)
    return scheduler


def main():
    """Main function to start the bot."""
    # Setup logging
    setup_logging()
    logger = logging.getLogger(__name__)

    logger.info("=" * 50)
    logger.info("3x-ui account bot starting...")
    logger.info("=" * 50)

    try:
        # Initialize database
        logger.info("Initializing database...")
        init_db()

        bot = create_bot()
        services = build_services(bot)
        register_handlers(bot, services)

        scheduler = create_scheduler(services)

        def shutdown(signum, frame):
            logger.info(f"Received signal {signum}, shutting down...")
            bot.stop_polling()

        signal.signal(signal.SIGINT, shutdown)
        signal.signal(signal.SIGTERM, shutdown)

        # Run once on startup
        if SYNC_ENABLED:
            identity_sync_job(services)
        snapshot_job(services)

        scheduler.start()
        logger.info(f"Scheduler started (sync every {SYNC_INTERVAL_HOURS}h, "
                    f"snapshots every {SNAPSHOT_INTERVAL_HOURS}h)")

        # Start polling (blocks main thread)
        try:
            start_polling(bot)
        finally:
            # Running jobs finish their current tick
            scheduler.shutdown(wait=True)
            services.shutdown()
            logger.info("Scheduler stopped")

    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == '__main__':
    main()
