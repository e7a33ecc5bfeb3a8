import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Callable, Dict, Optional
from uuid import uuid4

from jose import JWTError, jwt

from .credentials import CredentialStore
from .errors import AdminNotFoundError, InvalidCredentialsError, NotAuthenticatedError
from .models import Administrator, AdminIdentity

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
DEFAULT_SESSION_TTL = timedelta(hours=24)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Session:
    id: str
    admin_id: str
    username: str
    issued_at: datetime
    expires_at: datetime


class SessionService:
    def __init__(
        self,
        credentials: CredentialStore,
        secret_key: str,
        ttl: timedelta = DEFAULT_SESSION_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.credentials = credentials
        self.ttl = ttl
        self._secret_key = secret_key
        self._clock = clock
        self._sessions: Dict[str, Session] = {}
        self._lock = Lock()

    def login(self, username: str, password: str) -> str:
        logger.info(f"Login attempt for admin: {username}")
        admin = self.credentials.verify_credentials(username, password)
        if admin is None:
            logger.warning(f"Login failed for admin: {username}")
            raise InvalidCredentialsError("Invalid credentials")

        self.purge_expired()
        now = self._clock()
        session = Session(
            id=uuid4().hex,
            admin_id=admin.id,
            username=admin.username,
            issued_at=now,
            expires_at=now + self.ttl,
        )
        with self._lock:
            self._sessions[session.id] = session

        logger.info(f"Login successful for admin_id: {admin.id}")
        return jwt.encode(
            {"sub": admin.id, "sid": session.id, "iat": now, "exp": session.expires_at},
            self._secret_key,
            algorithm=ALGORITHM,
        )

    def validate(self, token: Optional[str]) -> Optional[AdminIdentity]:
        payload = self._decode(token)
        if payload is None:
            return None

        now = self._clock()
        with self._lock:
            session = self._sessions.get(payload.get("sid"))
            if session is None:
                return None
            if session.expires_at <= now:
                del self._sessions[session.id]
                logger.info(f"Session expired for admin_id: {session.admin_id}")
                return None
        if session.admin_id != payload.get("sub"):
            return None
        return AdminIdentity(id=session.admin_id, username=session.username)

    def logout(self, token: Optional[str]) -> None:
        payload = self._decode(token)
        if payload is None:
            return
        with self._lock:
            session = self._sessions.pop(payload.get("sid"), None)
        if session is not None:
            logger.info(f"Logout for admin_id: {session.admin_id}")

    def profile(self, identity: Optional[AdminIdentity]) -> Administrator:
        if identity is None:
            raise NotAuthenticatedError("Authentication required")
        admin = self.credentials.find_by_id(identity.id)
        if admin is None:
            logger.warning(f"Session refers to missing admin_id: {identity.id}")
            raise AdminNotFoundError("Admin not found")
        return admin

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [sid for sid, s in self._sessions.items() if s.expires_at <= now]
            for sid in expired:
                del self._sessions[sid]
        return len(expired)

    def active_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _decode(self, token: Optional[str]) -> Optional[dict]:
        if not token:
            return None
        try:
            # Expiry is enforced against the server-side session using the injected clock.
            return jwt.decode(token, self._secret_key, algorithms=[ALGORITHM], options={"verify_exp": False})
        except JWTError as e:
            logger.warning(f"Rejected session token: {e}")
            return None
