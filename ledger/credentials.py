import logging
from threading import Lock
from typing import Optional, Protocol
from uuid import uuid4

from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .db import AdminRow
from .errors import AdminNotFoundError, DuplicateUsernameError, StorageError
from .models import PLACEHOLDER_BALANCE, Administrator

logger = logging.getLogger(__name__)

DEFAULT_BCRYPT_ROUNDS = 10


class PasswordHasher:
    def __init__(self, rounds: int = DEFAULT_BCRYPT_ROUNDS):
        self._context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)

    def hash(self, password: str) -> str:
        return self._context.hash(password)

    def verify(self, password: str, password_hash: str) -> bool:
        return self._context.verify(password, password_hash)

    def dummy_verify(self) -> None:
        # Spend the same time as a real check when there is no hash to compare.
        self._context.dummy_verify()


class CredentialStore(Protocol):
    def find_by_id(self, admin_id: str) -> Optional[Administrator]:
        ...

    def find_by_username(self, username: str) -> Optional[Administrator]:
        ...

    def create(self, username: str, password: str) -> Administrator:
        ...

    # Unknown, inactive and wrong-password cases all return None.
    def verify_credentials(self, username: str, password: str) -> Optional[Administrator]:
        ...

    def set_active(self, admin_id: str, is_active: bool) -> Administrator:
        ...


def _check_password(hasher: PasswordHasher, admin: Optional[Administrator], password: str) -> Optional[Administrator]:
    if admin is None or not admin.is_active:
        hasher.dummy_verify()
        return None
    if not hasher.verify(password, admin.password_hash):
        return None
    return admin


class InMemoryCredentialStore(CredentialStore):
    def __init__(self, hasher: Optional[PasswordHasher] = None):
        self.hasher = hasher or PasswordHasher()
        self.admins: dict[str, Administrator] = {}
        self.admins_by_username: dict[str, str] = {}
        self._lock = Lock()

    def find_by_id(self, admin_id: str) -> Optional[Administrator]:
        with self._lock:
            return self.admins.get(admin_id)

    def find_by_username(self, username: str) -> Optional[Administrator]:
        with self._lock:
            admin_id = self.admins_by_username.get(username)
            return self.admins.get(admin_id) if admin_id else None

    def create(self, username: str, password: str) -> Administrator:
        password_hash = self.hasher.hash(password)
        with self._lock:
            if username in self.admins_by_username:
                raise DuplicateUsernameError(f"Username {username} already exists")
            admin = Administrator(
                id=str(uuid4()),
                username=username,
                password_hash=password_hash,
                is_active=True,
                balance=PLACEHOLDER_BALANCE,
            )
            self.admins[admin.id] = admin
            self.admins_by_username[username] = admin.id
        logger.info(f"Admin created with ID: {admin.id} for username: {username}")
        return admin

    def verify_credentials(self, username: str, password: str) -> Optional[Administrator]:
        return _check_password(self.hasher, self.find_by_username(username), password)

    def set_active(self, admin_id: str, is_active: bool) -> Administrator:
        with self._lock:
            admin = self.admins.get(admin_id)
            if admin is None:
                raise AdminNotFoundError(f"Admin {admin_id} not found")
            admin = admin.model_copy(update={"is_active": is_active})
            self.admins[admin_id] = admin
        return admin


class SqlCredentialStore(CredentialStore):
    def __init__(self, session_factory: sessionmaker, hasher: Optional[PasswordHasher] = None):
        self._session_factory = session_factory
        self.hasher = hasher or PasswordHasher()

    def _find_one(self, statement) -> Optional[Administrator]:
        try:
            with self._session_factory() as db:
                row = db.scalars(statement).first()
                return Administrator.model_validate(row) if row else None
        except SQLAlchemyError as e:
            logger.error(f"Database error while reading admins: {e}", exc_info=True)
            raise StorageError("Could not read admins.") from e

    def find_by_id(self, admin_id: str) -> Optional[Administrator]:
        return self._find_one(select(AdminRow).where(AdminRow.id == admin_id))

    def find_by_username(self, username: str) -> Optional[Administrator]:
        return self._find_one(select(AdminRow).where(AdminRow.username == username))

    def create(self, username: str, password: str) -> Administrator:
        row = AdminRow(
            id=str(uuid4()),
            username=username,
            password_hash=self.hasher.hash(password),
            is_active=True,
            balance=PLACEHOLDER_BALANCE,
        )
        with self._session_factory() as db:
            try:
                db.add(row)
                db.commit()
            except IntegrityError as e:
                db.rollback()
                logger.warning(f"Admin creation failed: username {username} already exists.")
                raise DuplicateUsernameError(f"Username {username} already exists") from e
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Database error during admin creation for {username}: {e}", exc_info=True)
                raise StorageError("Could not save admin.") from e
            logger.info(f"Admin created with ID: {row.id} for username: {username}")
            return Administrator.model_validate(row)

    def verify_credentials(self, username: str, password: str) -> Optional[Administrator]:
        return _check_password(self.hasher, self.find_by_username(username), password)

    def set_active(self, admin_id: str, is_active: bool) -> Administrator:
        with self._session_factory() as db:
            row = db.get(AdminRow, admin_id)
            if row is None:
                raise AdminNotFoundError(f"Admin {admin_id} not found")
            row.is_active = is_active
            try:
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Database error while updating admin {admin_id}: {e}", exc_info=True)
                raise StorageError("Could not update admin.") from e
            return Administrator.model_validate(row)


def seed_default_admin(store: CredentialStore, username: str, password: str) -> Administrator:
    existing = store.find_by_username(username)
    if existing is not None:
        return existing
    logger.info(f"Seeding default admin: {username}")
    return store.create(username, password)
