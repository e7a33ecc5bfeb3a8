import logging

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

Base = declarative_base()


class AdminRow(Base):
    __tablename__ = "admins"

    id = Column(String(36), primary_key=True)
    username = Column(String(255), unique=True, index=True, nullable=False)
    # bcrypt hash, never the plaintext password
    password_hash = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    balance = Column(String(32), nullable=False)


class TransactionRow(Base):
    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True)
    user_uid = Column(String(255), index=True, nullable=False)
    uc_amount = Column(Integer, nullable=False, default=0)
    coins_amount = Column(Integer, nullable=False, default=0)
    admin_id = Column(String(36), ForeignKey("admins.id"), nullable=False)
    # Snapshot of the admin's username at write time
    admin_username = Column(String(255), nullable=False)
    status = Column(String(32), nullable=False, default="completed")
    created_at = Column(DateTime(timezone=True), index=True, nullable=False)


def create_session_factory(database_url: str) -> sessionmaker:
    # In-memory SQLite shares one connection so every session sees the same database.
    options = {"pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            options["poolclass"] = StaticPool

    engine = create_engine(database_url, **options)
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables verified/created.")

    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
