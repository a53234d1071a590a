"""Keyed persistence for conversation state, approval requests and traffic snapshots."""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import distinct
from sqlalchemy.orm import Session

from .models import (
    REQ_PENDING,
    ExpiryNotice,
    ExtensionRequest,
    RegistrationRequest,
    TrafficSnapshot,
    UserState,
)

logger = logging.getLogger(__name__)


class StateStore:
    """Thread-safe facade over the SQLite tables.

    Every method opens its own short session; returned ORM objects are
    detached and safe to read from any thread. Callers never hold the store's
    lock across a network call.

    Usage:
        store = StateStore(get_session_factory())
        store.set_user_state(user_id, "awaiting_username")
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory
        self._lock = threading.RLock()

    @contextmanager
    def _session(self):
        with self._lock:
            db = self._session_factory()
            try:
                yield db
                db.commit()
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    # === User states ===

    def get_user_state(self, user_id: int) -> Optional[str]:
        with self._session() as db:
            row = db.get(UserState, user_id)
            return row.state if row else None

    def set_user_state(self, user_id: int, state: str) -> None:
        with self._session() as db:
            db.merge(UserState(user_id=user_id, state=state, updated_at=datetime.utcnow()))

    def delete_user_state(self, user_id: int) -> None:
        with self._session() as db:
            db.query(UserState).filter(UserState.user_id == user_id).delete()

    # === Registration requests ===

    def get_registration(self, user_id: int) -> Optional[RegistrationRequest]:
        with self._session() as db:
            return db.get(RegistrationRequest, user_id)

    def save_registration(self, request: RegistrationRequest) -> RegistrationRequest:
        with self._session() as db:
            return db.merge(request)

    def delete_registration(self, user_id: int) -> None:
        with self._session() as db:
            db.query(RegistrationRequest).filter(RegistrationRequest.user_id == user_id).delete()

    def list_registrations(self, status: Optional[str] = None) -> List[RegistrationRequest]:
        with self._session() as db:
            query = db.query(RegistrationRequest)
            if status:
                query = query.filter(RegistrationRequest.status == status)
            return query.order_by(RegistrationRequest.created_at).all()

    # === Extension requests ===

    def get_extension(self, user_id: int) -> Optional[ExtensionRequest]:
        with self._session() as db:
            return db.get(ExtensionRequest, user_id)

    def save_extension(self, request: ExtensionRequest) -> ExtensionRequest:
        with self._session() as db:
            return db.merge(request)

    def delete_extension(self, user_id: int) -> None:
        with self._session() as db:
            db.query(ExtensionRequest).filter(ExtensionRequest.user_id == user_id).delete()

    def list_extensions(self, status: Optional[str] = None) -> List[ExtensionRequest]:
        with self._session() as db:
            query = db.query(ExtensionRequest)
            if status:
                query = query.filter(ExtensionRequest.status == status)
            return query.order_by(ExtensionRequest.created_at).all()

    # === Traffic snapshots ===

    def add_snapshot(self, inbound_id: int, timestamp: datetime,
                     upload_bytes: int, download_bytes: int) -> TrafficSnapshot:
        snapshot = TrafficSnapshot(
            inbound_id=inbound_id,
            timestamp=timestamp,
            upload_bytes=upload_bytes,
            download_bytes=download_bytes,
            total_bytes=upload_bytes + download_bytes,
        )
        with self._session() as db:
            db.add(snapshot)
        return snapshot

    def get_snapshots(self, inbound_id: int, start: datetime, end: datetime) -> List[TrafficSnapshot]:
        """Snapshots of one inbound in [start, end], oldest first."""
        with self._session() as db:
            return db.query(TrafficSnapshot).filter(
                TrafficSnapshot.inbound_id == inbound_id,
                TrafficSnapshot.timestamp >= start,
                TrafficSnapshot.timestamp <= end,
            ).order_by(TrafficSnapshot.timestamp, TrafficSnapshot.id).all()

    def snapshot_inbound_ids(self, start: datetime, end: datetime) -> List[int]:
        """Inbounds that have at least one snapshot in [start, end]."""
        with self._session() as db:
            rows = db.query(distinct(TrafficSnapshot.inbound_id)).filter(
                TrafficSnapshot.timestamp >= start,
                TrafficSnapshot.timestamp <= end,
            ).all()
            return sorted(r[0] for r in rows)

    def delete_snapshots_before(self, cutoff: datetime) -> int:
        with self._session() as db:
            return db.query(TrafficSnapshot).filter(TrafficSnapshot.timestamp < cutoff).delete()

    # === Expiry notices ===

    def was_expiry_notified(self, user_id: int, expiry_time: int, days: int) -> bool:
        with self._session() as db:
            return db.query(ExpiryNotice).filter(
                ExpiryNotice.user_id == user_id,
                ExpiryNotice.expiry_time == expiry_time,
                ExpiryNotice.days == days,
            ).first() is not None

    def mark_expiry_notified(self, user_id: int, expiry_time: int, days: int) -> None:
        with self._session() as db:
            db.add(ExpiryNotice(user_id=user_id, expiry_time=expiry_time, days=days))

    # === Cleanup ===

    def cleanup_expired_states(self, max_age: timedelta) -> int:
        """Drop abandoned conversations: stale free-text states and unfinished requests.

        Pending requests are kept; they wait for an operator, not the user.
        """
        cutoff = datetime.utcnow() - max_age
        with self._session() as db:
            removed = db.query(UserState).filter(UserState.updated_at < cutoff).delete()
            removed += db.query(RegistrationRequest).filter(
                RegistrationRequest.created_at < cutoff,
                RegistrationRequest.status != REQ_PENDING,
            ).delete()
            removed += db.query(ExtensionRequest).filter(
                ExtensionRequest.created_at < cutoff,
                ExtensionRequest.status != REQ_PENDING,
            ).delete()
        if removed:
            logger.info(f"Removed {removed} abandoned conversation rows")
        return removed
