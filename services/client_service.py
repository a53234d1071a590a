"""Operations on every inbound copy of one user's account."""

import logging
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional

from vpn.client_record import ClientRecord, canonical_username, rename_email
from vpn.xui_models import InboundConfig, XUIClientNotFoundError, XUIError

from .identity_sync import CanonicalAccount, collect_users, parse_inbounds

logger = logging.getLogger(__name__)


@dataclass
class ClientCopy:
    """One user's record in one inbound."""

    inbound: InboundConfig
    record: ClientRecord

    @property
    def inbound_id(self) -> int:
        return self.inbound.id

    @property
    def client_key(self) -> str:
        return self.record.client_key(self.inbound.protocol)


@dataclass
class CopyResult:
    """Outcome of a bulk operation for one inbound copy."""

    inbound_id: int
    email: str
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ClientService:
    """Reads and mutates a user's account across all inbounds.

    Bulk operations visit every copy and return one CopyResult per copy;
    a failure on one inbound does not stop the others.
    """

    def __init__(self, gateway):
        self.gateway = gateway

    # === Lookups ===

    def find_copies(self, tg_id: int) -> List[ClientCopy]:
        """All records owned by ``tg_id``, one per inbound, in panel order."""
        copies = []
        for item in parse_inbounds(self.gateway.list_inbounds()):
            for record in item.records:
                if record.tg_id == tg_id:
                    copies.append(ClientCopy(item.inbound, record))
                    break
        return copies

    def get_canonical(self, tg_id: int) -> ClientRecord:
        """The first copy of the user's account.

        Raises:
            XUIClientNotFoundError: User owns no client in any inbound
        """
        copies = self.find_copies(tg_id)
        if not copies:
            raise XUIClientNotFoundError(f"No client with tgId {tg_id}")
        return copies[0].record

    def find_by_username(self, username: str) -> Optional[CanonicalAccount]:
        """Account whose canonical username matches (case-insensitive)."""
        wanted = canonical_username(username).strip().lower()
        for account in self.list_accounts():
            if account.username.lower() == wanted:
                return account
        return None

    def list_accounts(self) -> List[CanonicalAccount]:
        """Every owned account, sorted by username."""
        users = collect_users(self.gateway.list_inbounds())
        return sorted(users.values(), key=lambda a: a.username.lower())

    # === Mutations ===

    def _update_all(self, tg_id: int, change: Callable[[ClientRecord], ClientRecord],
                    action: str) -> List[CopyResult]:
        copies = self.find_copies(tg_id)
        if not copies:
            raise XUIClientNotFoundError(f"No client with tgId {tg_id}")

        results = []
        for copy in copies:
            updated = change(copy.record)
            try:
                self.gateway.update_client(copy.inbound_id, copy.client_key, updated)
                results.append(CopyResult(copy.inbound_id, updated.email))
            except XUIError as e:
                logger.error(f"Failed to {action} {copy.record.email} in inbound {copy.inbound_id}: {e}")
                results.append(CopyResult(copy.inbound_id, copy.record.email, e))
        return results

    def set_enabled(self, tg_id: int, enabled: bool) -> List[CopyResult]:
        results = self._update_all(tg_id, lambda r: replace(r, enable=enabled), "toggle")
        logger.info(f"Set enable={enabled} for tgId {tg_id} on {_ok_count(results)}/{len(results)} inbounds")
        return results

    def update_expiry(self, tg_id: int, expiry_time: int) -> List[CopyResult]:
        """Replace expiryTime on every copy; credentials and subId stay as they are."""
        results = self._update_all(tg_id, lambda r: replace(r, expiry_time=int(expiry_time)), "extend")
        logger.info(f"Set expiry={expiry_time} for tgId {tg_id} on {_ok_count(results)}/{len(results)} inbounds")
        return results

    def rename(self, tg_id: int, new_username: str) -> List[CopyResult]:
        """Change the canonical part of every copy's email, keeping suffixes."""
        results = self._update_all(
            tg_id, lambda r: replace(r, email=rename_email(r.email, new_username)), "rename"
        )
        logger.info(f"Renamed tgId {tg_id} to {new_username} on {_ok_count(results)}/{len(results)} inbounds")
        return results

    def delete_everywhere(self, tg_id: int) -> List[CopyResult]:
        """Delete every copy of the account."""
        copies = self.find_copies(tg_id)
        if not copies:
            raise XUIClientNotFoundError(f"No client with tgId {tg_id}")

        results = []
        for copy in copies:
            try:
                self.gateway.delete_client(copy.inbound_id, copy.client_key)
                results.append(CopyResult(copy.inbound_id, copy.record.email))
            except XUIError as e:
                logger.error(f"Failed to delete {copy.record.email} from inbound {copy.inbound_id}: {e}")
                results.append(CopyResult(copy.inbound_id, copy.record.email, e))
        logger.info(f"Deleted tgId {tg_id} from {_ok_count(results)}/{len(results)} inbounds")
        return results

    # === Traffic ===

    def get_traffic(self, tg_id: int) -> Dict[str, int]:
        """Traffic of the account summed over all copies.

        Copies without a traffic row on the panel count as zero.

        Returns:
            {"upload": bytes, "download": bytes, "total": bytes}
        """
        upload = download = 0
        for copy in self.find_copies(tg_id):
            try:
                traffic = self.gateway.get_client_traffic(copy.record.email)
            except XUIClientNotFoundError:
                continue
            upload += traffic.upload_bytes
            download += traffic.download_bytes
        return {"upload": upload, "download": download, "total": upload + download}


def _ok_count(results: List[CopyResult]) -> int:
    return sum(1 for r in results if r.ok)
