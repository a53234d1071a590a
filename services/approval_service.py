"""Operator-gated registration and extension workflows.

Registration: input_username -> input_duration -> pending -> approved | rejected
Extension:    input_duration -> pending -> approved | rejected

Requests are keyed by the requesting user's Telegram id, so the request id
and the user id are the same number. Approved and rejected requests are
deleted together with the user's free-text state; a failed approval leaves
the request pending so the operator can tap approve again.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple


from bot.keyboards.markups import extension_decision_keyboard, registration_decision_keyboard
from config.settings import (
    AUTO_APPROVE_TRIAL,
    DEVICE_LIMIT,
    INSTRUCTIONS_URL,
    PLANS,
    REFERENCE_INBOUND_ID,
    TRIAL_DAYS,
    format_dt,
)
from database.models import (
    REG_INPUT_DURATION,
    REG_INPUT_USERNAME,
    REQ_PENDING,
    STATE_AWAITING_USERNAME,
    ExtensionRequest,
    RegistrationRequest,
)
from message_templates import Messages, escape_md
from vpn.client_record import EMAIL_SUFFIX_SEPARATOR, ClientRecord, build_record, generate_sub_id
from vpn.xui_models import NotFoundError, RequestNotFoundError

from .client_service import CopyResult
from .identity_sync import CLIENT_PROTOCOLS, ParsedInbound, parse_inbounds
from .subscription_service import MS_PER_DAY, extend_expiry, now_ms

logger = logging.getLogger(__name__)

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 32


# === Exceptions ===

class WorkflowError(Exception):
    """Base exception for approval workflow errors."""
    pass


class ValidationError(WorkflowError):
    """User input rejected; the message is shown to the user."""
    pass


class RequestPendingError(WorkflowError):
    """User already has a request waiting for an operator."""
    pass


class UnlimitedSubscriptionError(WorkflowError):
    """Subscription without expiry cannot be extended."""
    pass


class InvalidStateError(WorkflowError):
    """Action does not match the request's current state."""
    pass


# === Results ===

@dataclass
class ApprovalResult:
    user_id: int
    username: str
    sub_id: str
    link: str
    expiry_time: int


@dataclass
class ExtensionResult:
    user_id: int
    username: str
    days: int
    expiry_time: int
    results: List[CopyResult] = field(default_factory=list)


class AutoApprovalJob:
    """Handle for a trial approval running on the workflow's worker pool.

    The job has already told the user and the operators how it ended by the
    time it completes; the handle is for callers that want to wait or chain.
    """

    def __init__(self, request_id: int, future: Future):
        self.request_id = request_id
        self._future = future

    @property
    def done(self) -> bool:
        return self._future.done()

    @property
    def failed(self) -> bool:
        return self._future.done() and self._future.exception() is not None

    def result(self, timeout: Optional[float] = None) -> ApprovalResult:
        """Wait for the approval; re-raises its error."""
        return self._future.result(timeout)

    def exception(self, timeout: Optional[float] = None) -> Optional[BaseException]:
        return self._future.exception(timeout)

    def add_done_callback(self, fn: Callable[["AutoApprovalJob"], None]) -> None:
        self._future.add_done_callback(lambda _: fn(self))


def _error_text(error: Exception) -> str:
    return str(error).replace("`", "'")[:300]


def _tg_name(username: Optional[str]) -> str:
    return escape_md(f"@{username}") if username else "без username"


# === Registration ===

class RegistrationWorkflow:
    """New-account flow.

    Usage:
        workflow.start(message.from_user)
        workflow.submit_username(user_id, "alice")
        job = workflow.submit_duration(user_id, 30)   # None unless trial auto-approval
        workflow.approve(user_id, operator_id)
    """

    def __init__(
        self,
        gateway,
        store,
        clients,
        subscriptions,
        notifier,
        plans: Optional[Dict[int, int]] = None,
        trial_days: int = TRIAL_DAYS,
        auto_approve_trial: bool = AUTO_APPROVE_TRIAL,
        reference_inbound_id: int = REFERENCE_INBOUND_ID,
        device_limit: int = DEVICE_LIMIT,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.gateway = gateway
        self.store = store
        self.clients = clients
        self.subscriptions = subscriptions
        self.notifier = notifier
        self.plans = plans if plans is not None else PLANS
        self.trial_days = trial_days
        self.auto_approve_trial = auto_approve_trial
        self.reference_inbound_id = reference_inbound_id
        self.device_limit = device_limit
        self.executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="auto-approve")

    def shutdown(self, wait: bool = True) -> None:
        self.executor.shutdown(wait=wait)

    def _get(self, request_id: int) -> RegistrationRequest:
        request = self.store.get_registration(request_id)
        if request is None:
            raise RequestNotFoundError(f"No registration request for user {request_id}")
        return request

    # --- user side ---

    def start(self, user) -> RegistrationRequest:
        """Open a registration for a Telegram user (anything with id, first_name, username).

        Raises:
            RequestPendingError: A request is already waiting for an operator
            InvalidStateError: The user already owns an account
        """
        existing = self.store.get_registration(user.id)
        if existing is not None and existing.is_pending:
            raise RequestPendingError(f"User {user.id} already has a pending registration")
        if self.clients.find_copies(user.id):
            raise InvalidStateError(f"User {user.id} is already registered")

        request = self.store.save_registration(RegistrationRequest(
            user_id=user.id,
            display_name=getattr(user, "first_name", None) or "",
            tg_username=getattr(user, "username", None) or "",
            username=None,
            duration_days=None,
            status=REG_INPUT_USERNAME,
            created_at=datetime.utcnow(),
        ))
        self.store.set_user_state(user.id, STATE_AWAITING_USERNAME)
        logger.info(f"Registration started for user {user.id}")
        return request

    def validate_username(self, user_id: int, text: str) -> str:
        """Trimmed username if it is acceptable for ``user_id``.

        Raises:
            ValidationError: Length, characters, or the name belongs to someone else
        """
        username = (text or "").strip()
        if not USERNAME_MIN_LENGTH <= len(username) <= USERNAME_MAX_LENGTH:
            raise ValidationError(Messages.USERNAME_LENGTH.format(
                min_len=USERNAME_MIN_LENGTH, max_len=USERNAME_MAX_LENGTH))
        if EMAIL_SUFFIX_SEPARATOR in username or any(c.isspace() for c in username):
            raise ValidationError(Messages.USERNAME_CHARS)

        taken = Messages.USERNAME_TAKEN.format(username=escape_md(username))
        account = self.clients.find_by_username(username)
        if account is not None and account.tg_id != user_id:
            raise ValidationError(taken)
        for other in self.store.list_registrations():
            if (other.user_id != user_id and other.username
                    and other.status in (REG_INPUT_DURATION, REQ_PENDING)
                    and other.username.lower() == username.lower()):
                raise ValidationError(taken)
        return username

    def submit_username(self, user_id: int, text: str) -> RegistrationRequest:
        request = self._get(user_id)
        if request.status != REG_INPUT_USERNAME:
            raise InvalidStateError(f"Registration of {user_id} is {request.status}, not awaiting a username")

        request.username = self.validate_username(user_id, text)
        request.status = REG_INPUT_DURATION
        request = self.store.save_registration(request)
        self.store.delete_user_state(user_id)
        return request

    def submit_duration(self, user_id: int, days: int) -> Optional[AutoApprovalJob]:
        """Fix the duration and queue the request for operators.

        For the trial duration with auto-approval on, the approval runs on the
        worker pool instead and the returned job tracks it.
        """
        request = self._get(user_id)
        if request.status != REG_INPUT_DURATION:
            raise InvalidStateError(f"Registration of {user_id} is {request.status}, not awaiting a duration")
        if days not in self.plans and days != self.trial_days:
            raise ValidationError(Messages.INVALID_DURATION)

        request.duration_days = days
        request.status = REQ_PENDING
        request = self.store.save_registration(request)

        if days == self.trial_days and self.auto_approve_trial:
            logger.info(f"Auto-approving trial registration of {user_id} ({request.username})")
            future = self.executor.submit(self._auto_approve, request.request_id)
            return AutoApprovalJob(request.request_id, future)

        self.notifier.notify_admins(
            self._admin_prompt(request),
            reply_markup=registration_decision_keyboard(request.request_id),
        )
        logger.info(f"Registration request {request.request_id} ({request.username}, {days}d) is pending")
        return None

    def _admin_prompt(self, request: RegistrationRequest) -> str:
        return Messages.ADMIN_NEW_REGISTRATION.format(
            display_name=escape_md(request.display_name or "—"),
            tg_username=_tg_name(request.tg_username),
            user_id=request.user_id,
            username=escape_md(request.username or ""),
            days=request.duration_days,
        )

    # --- operator side ---

    def approve(self, request_id: int, operator_id: Optional[int] = None) -> ApprovalResult:
        """Create the account in the reference inbound and send the user the link.

        Any error propagates and the request stays pending.
        """
        request = self._get(request_id)
        if not request.is_pending:
            raise InvalidStateError(f"Registration {request_id} is {request.status}, not pending")

        record = self._create_account(request)
        link = self.subscriptions.get_link(record.sub_id)
        qr_png = self.subscriptions.render_qr(link)

        self.store.delete_registration(request.user_id)
        self.store.delete_user_state(request.user_id)

        username = escape_md(record.canonical_username)
        expiry = format_dt(record.expiry_time)
        instructions = Messages.INSTRUCTIONS_LINK.format(url=INSTRUCTIONS_URL) if INSTRUCTIONS_URL else ""
        self.notifier.send_text(request.user_id, Messages.REGISTRATION_APPROVED.format(
            username=username, expiry=expiry, link=link, instructions=instructions))
        self.notifier.send_photo(request.user_id, qr_png, caption=Messages.QR_CAPTION)
        if operator_id:
            self.notifier.send_text(operator_id, Messages.ADMIN_REGISTRATION_APPROVED.format(
                username=username, expiry=expiry))

        logger.info(f"Registration {request_id} approved by {operator_id or 'auto'}: "
                    f"{record.email} until {record.expiry_time}")
        return ApprovalResult(
            user_id=request.user_id,
            username=record.canonical_username,
            sub_id=record.sub_id,
            link=link,
            expiry_time=record.expiry_time,
        )

    def reject(self, request_id: int, operator_id: Optional[int] = None) -> RegistrationRequest:
        request = self._get(request_id)
        if not request.is_pending:
            raise InvalidStateError(f"Registration {request_id} is {request.status}, not pending")

        self.store.delete_registration(request.user_id)
        self.store.delete_user_state(request.user_id)

        self.notifier.send_text(request.user_id, Messages.REGISTRATION_REJECTED)
        if operator_id:
            self.notifier.send_text(operator_id, Messages.ADMIN_REGISTRATION_REJECTED.format(
                username=escape_md(request.username or "")))
        logger.info(f"Registration {request_id} rejected by {operator_id}")
        return request

    # --- internals ---

    def _reference_inbound(self, parsed: List[ParsedInbound]) -> ParsedInbound:
        if self.reference_inbound_id:
            for item in parsed:
                if item.inbound.id == self.reference_inbound_id:
                    return item
            raise NotFoundError(f"Reference inbound {self.reference_inbound_id} not found")

        for item in parsed:
            if item.valid and item.inbound.protocol.lower() in CLIENT_PROTOCOLS:
                return item
        raise NotFoundError("No inbound can hold clients")

    def _create_account(self, request: RegistrationRequest) -> ClientRecord:
        parsed = parse_inbounds(self.gateway.list_inbounds())

        # A retried approval whose create already went through
        for item in parsed:
            for existing in item.records:
                if existing.tg_id == request.user_id:
                    logger.info(f"User {request.user_id} already has {existing.email}, reusing it")
                    return existing

        reference = self._reference_inbound(parsed)
        record = build_record(
            protocol=reference.inbound.protocol,
            email=request.username,
            sub_id=generate_sub_id(),
            tg_id=request.user_id,
            expiry_time=now_ms() + request.duration_days * MS_PER_DAY,
            total_gb=0,
            limit_ip=self.device_limit,
            enable=True,
            inbound_settings=reference.settings,
        )
        self.gateway.add_client(reference.inbound.id, record)
        return record

    def _auto_approve(self, request_id: int) -> ApprovalResult:
        request = self._get(request_id)
        try:
            result = self.approve(request_id)
        except Exception as e:
            logger.error(f"Auto-approval of registration {request_id} failed: {e}", exc_info=True)
            self.notifier.send_text(request.user_id, Messages.AUTO_APPROVE_FAILED_USER)
            failure = Messages.ADMIN_AUTO_APPROVE_FAILED.format(
                username=escape_md(request.username or ""), error=_error_text(e))
            self.notifier.notify_admins(
                f"{failure}\n\n{self._admin_prompt(request)}",
                reply_markup=registration_decision_keyboard(request.request_id),
            )
            raise

        self.notifier.notify_admins(Messages.ADMIN_AUTO_APPROVED.format(
            username=escape_md(result.username), days=request.duration_days))
        return result


# === Extension ===

class ExtensionWorkflow:
    """Extension of an existing account.

    Usage:
        request, record = workflow.start(user_id, "tg_name")
        workflow.submit_duration(user_id, 30)
        workflow.approve(user_id, operator_id)
    """

    def __init__(self, store, clients, notifier, plans: Optional[Dict[int, int]] = None):
        self.store = store
        self.clients = clients
        self.notifier = notifier
        self.plans = plans if plans is not None else PLANS

    def _get(self, request_id: int) -> ExtensionRequest:
        request = self.store.get_extension(request_id)
        if request is None:
            raise RequestNotFoundError(f"No extension request for user {request_id}")
        return request

    def _canonical(self, user_id: int) -> ClientRecord:
        record = self.clients.get_canonical(user_id)
        if record.expiry_time == 0:
            raise UnlimitedSubscriptionError(f"User {user_id} has an unlimited subscription")
        return record

    # --- user side ---

    def start(self, user_id: int, tg_username: str = "") -> Tuple[ExtensionRequest, ClientRecord]:
        """Open an extension for the user's account.

        Raises:
            RequestPendingError: An extension is already waiting for an operator
            XUIClientNotFoundError: The user has no account
            UnlimitedSubscriptionError: The account never expires
        """
        existing = self.store.get_extension(user_id)
        if existing is not None and existing.is_pending:
            raise RequestPendingError(f"User {user_id} already has a pending extension")

        record = self._canonical(user_id)
        request = self.store.save_extension(ExtensionRequest(
            user_id=user_id,
            tg_username=tg_username or "",
            username=record.canonical_username,
            duration_days=None,
            target_expiry=None,
            status=REG_INPUT_DURATION,
            created_at=datetime.utcnow(),
        ))
        return request, record

    def submit_duration(self, user_id: int, days: int) -> ExtensionRequest:
        request = self._get(user_id)
        if request.status != REG_INPUT_DURATION:
            raise InvalidStateError(f"Extension of {user_id} is {request.status}, not awaiting a duration")
        if days not in self.plans:
            raise ValidationError(Messages.INVALID_DURATION)

        record = self._canonical(user_id)
        request.duration_days = days
        request.status = REQ_PENDING
        request = self.store.save_extension(request)

        self.notifier.notify_admins(
            Messages.ADMIN_NEW_EXTENSION.format(
                tg_username=_tg_name(request.tg_username),
                user_id=user_id,
                username=escape_md(request.username or ""),
                expiry=format_dt(record.expiry_time),
                days=days,
            ),
            reply_markup=extension_decision_keyboard(request.request_id),
        )
        logger.info(f"Extension request {request.request_id} ({request.username}, {days}d) is pending")
        return request

    # --- operator side ---

    def approve(self, request_id: int, operator_id: Optional[int] = None) -> ExtensionResult:
        """Push the new expiry to every copy of the account.

        New expiry = max(current expiry, now) + days, computed once; a retry
        after a partial failure pushes the same value again.
        """
        request = self._get(request_id)
        if not request.is_pending:
            raise InvalidStateError(f"Extension {request_id} is {request.status}, not pending")

        if request.target_expiry is None:
            record = self._canonical(request.user_id)
            request.target_expiry = extend_expiry(record.expiry_time, request.duration_days)
            request = self.store.save_extension(request)

        results = self.clients.update_expiry(request.user_id, request.target_expiry)
        failures = [r for r in results if not r.ok]
        if failures:
            logger.error(f"Extension {request_id}: {len(failures)}/{len(results)} copies not updated")
            raise failures[0].error

        self.store.delete_extension(request.user_id)
        self.store.delete_user_state(request.user_id)

        username = escape_md(request.username or "")
        expiry = format_dt(request.target_expiry)
        self.notifier.send_text(request.user_id, Messages.EXTENSION_APPROVED.format(
            days=request.duration_days, expiry=expiry))
        if operator_id:
            self.notifier.send_text(operator_id, Messages.ADMIN_EXTENSION_APPROVED.format(
                username=username, expiry=expiry))

        logger.info(f"Extension {request_id} approved by {operator_id}: {request.username} "
                    f"until {request.target_expiry}")
        return ExtensionResult(
            user_id=request.user_id,
            username=request.username or "",
            days=request.duration_days,
            expiry_time=request.target_expiry,
            results=results,
        )

    def reject(self, request_id: int, operator_id: Optional[int] = None) -> ExtensionRequest:
        request = self._get(request_id)
        if not request.is_pending:
            raise InvalidStateError(f"Extension {request_id} is {request.status}, not pending")

        self.store.delete_extension(request.user_id)
        self.store.delete_user_state(request.user_id)

        self.notifier.send_text(request.user_id, Messages.EXTENSION_REJECTED)
        if operator_id:
            self.notifier.send_text(operator_id, Messages.ADMIN_EXTENSION_REJECTED.format(
                username=escape_md(request.username or "")))
        logger.info(f"Extension {request_id} rejected by {operator_id}")
        return request
