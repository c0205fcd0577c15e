"""
Admin session tokens.

Login issues an opaque random token with an expiry. Only the SHA-256 hash of
a token is kept, so the raw value exists solely in the login response.
Sessions live in process memory and end on restart.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from threading import Lock
from typing import Callable, Dict, Optional, Tuple

from .credential_store import CredentialStore
from .errors import UnauthorizedError
from .utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class Session:
    username: str
    created_at: datetime
    expires_at: datetime


class SessionManager:
    def __init__(
        self,
        credentials: CredentialStore,
        ttl_seconds: int = 3600,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._credentials = credentials
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._sessions: Dict[str, Session] = {}
        self._lock = Lock()

    @staticmethod
    def _hash_token(token: str) -> str:
        return hashlib.sha256(token.encode()).hexdigest()

    def login(self, username: str, password: str) -> Tuple[str, Session]:
        """
        Check credentials and open a session.

        Returns:
            (raw_token, session). The raw token is not retrievable later.

        Raises:
            UnauthorizedError: On any username or password mismatch
        """
        if not self._credentials.verify(username, password):
            logger.warning(f"Failed admin login for {username!r}")
            raise UnauthorizedError("Invalid credentials")

        token = secrets.token_urlsafe(32)
        now = self._clock()
        session = Session(username=username, created_at=now, expires_at=now + self._ttl)
        with self._lock:
            self._purge_expired(now)
            self._sessions[self._hash_token(token)] = session
        logger.info(f"Admin {username!r} logged in")
        return token, session

    def validate(self, token: Optional[str]) -> Optional[Session]:
        if not token:
            return None
        key = self._hash_token(token)
        now = self._clock()
        with self._lock:
            session = self._sessions.get(key)
            if session is None:
                return None
            if session.expires_at <= now:
                del self._sessions[key]
                return None
            return session

    def revoke(self, token: str) -> bool:
        with self._lock:
            return self._sessions.pop(self._hash_token(token), None) is not None

    def _purge_expired(self, now: datetime) -> None:
        expired = [key for key, session in self._sessions.items() if session.expires_at <= now]
        for key in expired:
            del self._sessions[key]
