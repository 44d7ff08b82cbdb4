import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Optional

from loguru import logger

from onramp.exceptions import SessionConflict, SessionNotFound, SessionStateError
from onramp.solana.models import (
    INITIAL_STATUSES,
    PaymentSession,
    SessionStatus,
)


class PaymentSessionStore(ABC):
    """
    Storage for payment sessions, keyed by session id.

    Implementations must make `claim` atomic: two concurrent claims for the
    same session id can never both succeed.
    """

    @abstractmethod
    def create(self, session_id: str, record: PaymentSession) -> PaymentSession:
        ...

    @abstractmethod
    def get(self, session_id: str) -> Optional[PaymentSession]:
        ...

    @abstractmethod
    def update(self, session_id: str, patch: Dict[str, Any]) -> PaymentSession:
        ...

    @abstractmethod
    def claim(self, session_id: str, allowed: Iterable[SessionStatus]) -> PaymentSession:
        ...

    @abstractmethod
    def release(self, session_id: str) -> Optional[PaymentSession]:
        ...


class InMemorySessionStore(PaymentSessionStore):
    """
    Single-process, in-memory session store.

    Sessions are never evicted. Not safe for multi-process deployments; a
    persistent key-value store should back `PaymentSessionStore` there.
    """

    # Fields fixed at creation
    IMMUTABLE_FIELDS = frozenset({
        "id", "wallet_address", "is_token_swap", "token_symbol", "token_address", "token_amount",
        "timestamp",
    })

    def __init__(self):
        """Initialize the store with an empty sessions dictionary."""
        self._sessions: Dict[str, PaymentSession] = {}
        self._lock = threading.Lock()

    def create(self, session_id: str, record: PaymentSession) -> PaymentSession:
        with self._lock:
            if session_id in self._sessions:
                raise SessionStateError(f"Session {session_id} already exists")
            self._sessions[session_id] = record

        logger.debug(
            f"Session {session_id} created",
            extra={"session_id": session_id, "status": record.status.value}
        )
        return record

    def get(self, session_id: str) -> Optional[PaymentSession]:
        with self._lock:
            session = self._sessions.get(session_id)
            return session.model_copy() if session else None

    def update(self, session_id: str, patch: Dict[str, Any]) -> PaymentSession:
        """
        Apply a partial update to a session.

        Args:
            session_id: The session id
            patch: Field names mapped to their new values

        Returns:
            The updated session

        Raises:
            SessionNotFound: If the session does not exist
            SessionStateError: If the patch would move the status backward
                or change a field fixed at creation
        """
        with self._lock:
            session = self._require(session_id)

            frozen = self.IMMUTABLE_FIELDS.intersection(patch)
            if frozen:
                raise SessionStateError(f"Fields {sorted(frozen)} cannot be changed")

            if "status" in patch:
                new_status = SessionStatus(patch["status"])
                self._check_transition(session, new_status)
                patch = dict(patch, status=new_status)
                if new_status != SessionStatus.IN_PROGRESS:
                    patch["claimed_from"] = None

            updated = session.model_copy(update=patch)
            self._sessions[session_id] = updated

        logger.debug(
            f"Session {session_id} updated",
            extra={"session_id": session_id, "fields": list(patch.keys())}
        )
        return updated.model_copy()

    def claim(self, session_id: str, allowed: Iterable[SessionStatus]) -> PaymentSession:
        """
        Atomically mark a session as in progress.

        Raises:
            SessionNotFound: If the session does not exist
            SessionConflict: If the session is already claimed or settled
        """
        allowed = frozenset(allowed)
        with self._lock:
            session = self._require(session_id)
            if session.status not in allowed:
                raise SessionConflict(
                    f"Session {session_id} cannot be settled from status '{session.status.value}'",
                    details={"sessionStatus": session.status.value}
                )
            claimed = session.model_copy(update={
                "status": SessionStatus.IN_PROGRESS,
                "claimed_from": session.status,
            })
            self._sessions[session_id] = claimed

        logger.info(f"Session {session_id} claimed for settlement (was {session.status.value})")
        return claimed.model_copy()

    def release(self, session_id: str) -> Optional[PaymentSession]:
        """Restore a claimed session to the status it held before the claim."""
        with self._lock:
            session = self._sessions.get(session_id)
            if not session or session.status != SessionStatus.IN_PROGRESS:
                return session.model_copy() if session else None
            restored = session.model_copy(update={
                "status": session.claimed_from or SessionStatus.PAYMENT_COMPLETED,
                "claimed_from": None,
            })
            self._sessions[session_id] = restored

        logger.info(f"Session {session_id} released back to {restored.status.value}")
        return restored.model_copy()

    def __len__(self) -> int:
        return len(self._sessions)

    def _require(self, session_id: str) -> PaymentSession:
        session = self._sessions.get(session_id)
        if not session:
            raise SessionNotFound(f"Session {session_id} not found")
        return session

    @staticmethod
    def _check_transition(session: PaymentSession, new_status: SessionStatus):
        current = session.status
        if current == new_status:
            return
        if current.is_terminal:
            raise SessionStateError(
                f"Session {session.id} is already {current.value}; cannot move to {new_status.value}"
            )
        if new_status in INITIAL_STATUSES and current not in INITIAL_STATUSES:
            raise SessionStateError(
                f"Session {session.id} cannot move back from {current.value} to {new_status.value}"
            )
        if current == SessionStatus.PAYMENT_COMPLETED and new_status == SessionStatus.CREATED:
            raise SessionStateError(f"Session {session.id} cannot move back to created")
