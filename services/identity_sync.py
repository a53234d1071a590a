"""Multi-inbound identity sync.

Every Telegram user that owns a client in any inbound must own one in every
inbound. A cycle lists the inbounds, folds their clients into one canonical
account per ``tgId`` and creates the missing copies. Nothing is updated or
deleted here, so running a cycle again after a partial failure is the retry.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from vpn.client_record import (
    ClientRecord,
    build_record,
    canonical_username,
    decode_settings,
    inbound_email,
)
from vpn.xui_models import InboundConfig, ParseError, PartialSyncFailure, XUIError

logger = logging.getLogger(__name__)

# Protocols whose settings carry a "clients" array
CLIENT_PROTOCOLS = frozenset({"vless", "vmess", "trojan", "shadowsocks"})


@dataclass
class CanonicalAccount:
    """One logical user as seen across all inbounds.

    Attributes come from the first copy found while walking the inbounds in
    panel order; ``copies`` maps inbound id to that inbound's record.
    """

    tg_id: int
    username: str
    sub_id: str
    enable: bool
    expiry_time: int
    total_gb: int
    limit_ip: int
    source_inbound_id: int
    copies: Dict[int, ClientRecord] = field(default_factory=dict)

    @classmethod
    def from_record(cls, record: ClientRecord, inbound_id: int) -> "CanonicalAccount":
        return cls(
            tg_id=record.tg_id,
            username=record.canonical_username,
            sub_id=record.sub_id,
            enable=record.enable,
            expiry_time=record.expiry_time,
            total_gb=record.total_gb,
            limit_ip=record.limit_ip,
            source_inbound_id=inbound_id,
        )

    @property
    def canonical_record(self) -> ClientRecord:
        return self.copies[self.source_inbound_id]


@dataclass
class ParsedInbound:
    inbound: InboundConfig
    settings: dict
    records: List[ClientRecord]
    valid: bool = True


@dataclass
class PairResult:
    """Outcome of one (user, inbound) create attempt."""

    tg_id: int
    inbound_id: int
    email: str
    error: Optional[PartialSyncFailure] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class SyncReport:
    inbound_count: int = 0
    user_count: int = 0
    results: List[PairResult] = field(default_factory=list)

    @property
    def created(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.ok)

    @property
    def failures(self) -> List[PairResult]:
        return [r for r in self.results if not r.ok]


def parse_inbounds(inbounds: Iterable[InboundConfig]) -> List[ParsedInbound]:
    """Decode every inbound's client list; malformed inbounds count as empty."""
    parsed = []
    for inbound in inbounds:
        try:
            settings, records = decode_settings(inbound.settings)
        except ParseError as e:
            logger.error(f"Inbound {inbound.id} has malformed settings, treating as empty: {e}")
            parsed.append(ParsedInbound(inbound, {}, [], valid=False))
            continue
        parsed.append(ParsedInbound(inbound, settings, records))
    return parsed


def collect_users(inbounds: Iterable[InboundConfig]) -> Dict[int, CanonicalAccount]:
    """Fold all inbounds into canonical accounts keyed by tgId.

    Records without an owner (tgId 0) are not accounts and are ignored.
    """
    return _fold(parse_inbounds(inbounds))


def _fold(parsed: List[ParsedInbound]) -> Dict[int, CanonicalAccount]:
    users: Dict[int, CanonicalAccount] = {}
    for item in parsed:
        for record in item.records:
            if record.tg_id == 0:
                continue
            account = users.get(record.tg_id)
            if account is None:
                account = CanonicalAccount.from_record(record, item.inbound.id)
                users[record.tg_id] = account
            # First copy per inbound wins, like the canonical attributes
            account.copies.setdefault(item.inbound.id, record)
    return users


class IdentitySyncEngine:
    """Creates missing per-inbound copies of every user account.

    Usage:
        engine = IdentitySyncEngine(gateway)
        report = engine.run()
        logger.info(f"created={report.created} failed={report.failed}")
    """

    def __init__(self, gateway):
        self.gateway = gateway

    def run(self) -> SyncReport:
        """Run one reconciliation cycle.

        Never raises for panel errors: a failed listing gives an empty
        report and a failed create is recorded in the report.
        """
        try:
            inbounds = self.gateway.list_inbounds()
        except XUIError as e:
            logger.error(f"Identity sync: failed to list inbounds: {e}")
            return SyncReport()

        parsed = parse_inbounds(inbounds)
        users = _fold(parsed)
        report = SyncReport(inbound_count=len(parsed), user_count=len(users))

        for tg_id in sorted(users):
            account = users[tg_id]
            for item in parsed:
                inbound = item.inbound
                if inbound.id in account.copies:
                    continue
                if not item.valid:
                    continue
                if inbound.protocol.lower() not in CLIENT_PROTOCOLS:
                    continue
                report.results.append(self._create_copy(account, item))

        if report.results:
            logger.info(
                f"Identity sync: {report.user_count} users, {report.inbound_count} inbounds, "
                f"created {report.created}, failed {report.failed}"
            )
        else:
            logger.debug(f"Identity sync: {report.user_count} users already present everywhere")
        return report

    def _create_copy(self, account: CanonicalAccount, item: ParsedInbound) -> PairResult:
        inbound = item.inbound
        record = build_copy(account, inbound, item.settings)
        try:
            self.gateway.add_client(inbound.id, record)
        except Exception as e:
            failure = PartialSyncFailure(
                f"Failed to create {record.email} in inbound {inbound.id}: {e}",
                tg_id=account.tg_id,
                inbound_id=inbound.id,
                original_error=e,
            )
            logger.error(failure.message)
            return PairResult(account.tg_id, inbound.id, record.email, failure)

        account.copies[inbound.id] = record
        return PairResult(account.tg_id, inbound.id, record.email)


def build_copy(account: CanonicalAccount, inbound: InboundConfig, inbound_settings: dict) -> ClientRecord:
    """New record for ``account`` in ``inbound``: fresh credential, shared subId."""
    return build_record(
        protocol=inbound.protocol,
        email=inbound_email(canonical_username(account.username), inbound.remark, inbound.id),
        sub_id=account.sub_id,
        tg_id=account.tg_id,
        expiry_time=account.expiry_time,
        total_gb=account.total_gb,
        limit_ip=account.limit_ip,
        enable=account.enable,
        inbound_settings=inbound_settings,
    )
