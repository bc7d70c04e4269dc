from __future__ import annotations

import logging
import time
from typing import Callable

from services.uploader.application.interfaces import KeyValueStore
from services.uploader.domain.errors import ResumeStateInvalid, UploadInProgress
from services.uploader.domain.session import ResumeState, UploadSession, UploadTarget

logger = logging.getLogger(__name__)

SESSION_PREFIX = "upload-session:"
RESUME_PREFIX = "upload-resume:"
LEASE_PREFIX = "upload-lease:"

DEFAULT_RESUME_MAX_AGE_SECONDS = 6 * 3600
DEFAULT_LEASE_TTL_SECONDS = 300


class UploadStateStore:
    """Durable client state per ``(resource, item, field)`` slot.

    Three records live side by side: the session record replayed on remount,
    the resume cursor for chunked transfers, and the lease that keeps two
    clients from driving the same slot at once.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        resume_max_age_seconds: float = DEFAULT_RESUME_MAX_AGE_SECONDS,
        lease_ttl_seconds: float = DEFAULT_LEASE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._resume_max_age = resume_max_age_seconds
        self._lease_ttl = lease_ttl_seconds
        self._clock = clock

    # Session records

    def save_session(self, session: UploadSession) -> None:
        self._store.set(SESSION_PREFIX + session.target.key, session.to_record())

    def load_session(self, target_key: str) -> UploadSession | None:
        record = self._store.get(SESSION_PREFIX + target_key)
        if record is None:
            return None
        try:
            return UploadSession.from_record(record)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Dropping unreadable session record %s: %s", target_key, exc)
            self._store.delete(SESSION_PREFIX + target_key)
            return None

    def find_session(self, client_id: str) -> UploadSession | None:
        for key in self._store.keys(SESSION_PREFIX):
            session = self.load_session(key[len(SESSION_PREFIX):])
            if session is not None and session.client_id == client_id:
                return session
        return None

    def sessions(self) -> list[UploadSession]:
        found = []
        for key in self._store.keys(SESSION_PREFIX):
            session = self.load_session(key[len(SESSION_PREFIX):])
            if session is not None:
                found.append(session)
        return found

    def clear(self, target_key: str, client_id: str | None = None) -> bool:
        """Forget everything about a slot once its upload reached a terminal state.

        With ``client_id`` the slot is only cleared while its record still
        belongs to that upload; a newer upload's record and cursor are kept.
        """
        with self._store.transaction():
            record = self._store.get(SESSION_PREFIX + target_key)
            if (
                client_id is not None
                and record is not None
                and record.get("clientId") != client_id
            ):
                logger.info(
                    "Keeping %s: slot now belongs to %s", target_key, record.get("clientId")
                )
                return False
            self._store.delete(SESSION_PREFIX + target_key)
            self._store.delete(RESUME_PREFIX + target_key)
        return True

    # Resume cursor

    def save_resume(self, target_key: str, state: ResumeState) -> None:
        self._store.set(RESUME_PREFIX + target_key, state.to_dict())

    def discard_resume(self, target_key: str) -> None:
        self._store.delete(RESUME_PREFIX + target_key)

    def load_resume(
        self,
        target_key: str,
        *,
        fingerprint: str,
        chunk_size: int,
        total_chunks: int,
    ) -> ResumeState | None:
        """Return a usable cursor or ``None``; stale or foreign state is discarded."""
        record = self._store.get(RESUME_PREFIX + target_key)
        if record is None:
            return None
        try:
            state = ResumeState.from_dict(record)
            self._validate(state, fingerprint, chunk_size, total_chunks)
        except (KeyError, TypeError, ValueError) as exc:
            # ResumeStateInvalid is a ValueError.
            logger.info("Discarding resume state for %s: %s", target_key, exc)
            self.discard_resume(target_key)
            return None
        return state

    def _validate(
        self, state: ResumeState, fingerprint: str, chunk_size: int, total_chunks: int
    ) -> None:
        if self._clock() - state.updated_at >= self._resume_max_age:
            raise ResumeStateInvalid("resume state is too old")
        if state.file_fingerprint != fingerprint:
            raise ResumeStateInvalid("file changed since the last attempt")
        if state.chunk_size != chunk_size or state.total_chunks != total_chunks:
            raise ResumeStateInvalid("chunk layout changed")
        if not 0 < state.next_chunk_index < total_chunks:
            raise ResumeStateInvalid(f"cursor {state.next_chunk_index} is out of range")

    # Lease

    def acquire_lease(self, target_key: str, owner: str) -> None:
        key = LEASE_PREFIX + target_key
        with self._store.transaction():
            now = self._clock()
            current = self._store.get(key)
            if (
                current is not None
                and current.get("owner") != owner
                and float(current.get("expiresAt") or 0) > now
            ):
                raise UploadInProgress(
                    f"Another client is already uploading to {target_key}"
                )
            self._store.set(key, {"owner": owner, "expiresAt": now + self._lease_ttl})

    def renew_lease(self, target_key: str, owner: str) -> None:
        self.acquire_lease(target_key, owner)

    def release_lease(self, target_key: str, owner: str) -> None:
        key = LEASE_PREFIX + target_key
        with self._store.transaction():
            current = self._store.get(key)
            if current is not None and current.get("owner") == owner:
                self._store.delete(key)
