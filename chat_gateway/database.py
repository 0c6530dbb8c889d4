"""
Audit log storage. AUDIT_DATABASE_URL selects the database; a local SQLite file by default.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from chat_gateway.config import DATABASE_URL
from chat_gateway.models import Base

# An in-memory audit log must live on a single shared connection or each session sees an empty DB
if DATABASE_URL.startswith("sqlite:///:memory:"):
    engine = create_engine(
        DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
else:
    # Audit rows are written from FastAPI's threadpool
    connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
    engine = create_engine(DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db() -> None:
    """Create the audit_logs table if it does not exist yet."""
    Base.metadata.create_all(bind=engine)


def get_db():
    """Dependency: one session per request for audit writes and the /audit listing."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
