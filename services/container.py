"""Wiring of the gateway, store and services for one bot process."""

import logging
from dataclasses import dataclass

from telebot import TeleBot

from config import settings
from database.connection import get_session_factory
from database.store import StateStore
from vpn.xui_client import PanelGateway

from .approval_service import ExtensionWorkflow, RegistrationWorkflow
from .client_service import ClientService
from .forecast_service import ForecastService
from .identity_sync import IdentitySyncEngine
from .notification_service import NotificationService
from .subscription_service import SubscriptionService

logger = logging.getLogger(__name__)


@dataclass
class Services:
    gateway: PanelGateway
    store: StateStore
    clients: ClientService
    subscriptions: SubscriptionService
    notifier: NotificationService
    sync: IdentitySyncEngine
    registration: RegistrationWorkflow
    extension: ExtensionWorkflow
    forecast: ForecastService

    def shutdown(self) -> None:
        self.registration.shutdown(wait=False)


def build_services(bot: TeleBot) -> Services:
    """Create every service from config.settings; the database must be initialized."""
    gateway = PanelGateway(
        settings.PANEL_URL,
        settings.PANEL_USERNAME,
        settings.PANEL_PASSWORD,
        timeout=settings.PANEL_TIMEOUT,
        verify_tls=settings.PANEL_VERIFY_TLS,
    )
    store = StateStore(get_session_factory())
    clients = ClientService(gateway)
    subscriptions = SubscriptionService(gateway, settings.PANEL_URL, settings.SUBSCRIPTION_BASE_URL)
    notifier = NotificationService(bot, settings.ADMIN_IDS, store=store, client_service=clients)

    services = Services(
        gateway=gateway,
        store=store,
        clients=clients,
        subscriptions=subscriptions,
        notifier=notifier,
        sync=IdentitySyncEngine(gateway),
        registration=RegistrationWorkflow(gateway, store, clients, subscriptions, notifier),
        extension=ExtensionWorkflow(store, clients, notifier),
        forecast=ForecastService(gateway, store, notifier),
    )
    logger.info(f"Services ready (panel {settings.PANEL_URL}, {len(settings.ADMIN_IDS)} operators)")
    return services
