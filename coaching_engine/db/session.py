import os
from pathlib import Path

from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker

from coaching_engine.db.models import Base

# Override with DB_PATH when needed.
DB_PATH = os.getenv("DB_PATH", "/var/data/coaching_engine.db")
DB_BUSY_TIMEOUT_SECONDS = float(os.getenv("DB_BUSY_TIMEOUT_SECONDS", "30"))

# Concurrent writers (interaction tracking) wait on the SQLite lock instead of failing fast.
connect_args = {"check_same_thread": False, "timeout": DB_BUSY_TIMEOUT_SECONDS}


def _build_engine(db_path: str):
    db_parent = Path(db_path).expanduser().resolve().parent
    db_parent.mkdir(parents=True, exist_ok=True)
    database_url = f"sqlite:///{db_path}"
    return create_engine(database_url, connect_args=connect_args)


engine = _build_engine(DB_PATH)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def configure_database(db_path: str) -> None:
    global DB_PATH, engine
    DB_PATH = db_path
    engine = _build_engine(DB_PATH)
    SessionLocal.configure(bind=engine)


def create_tables() -> None:
    Base.metadata.create_all(bind=engine)
    # Lightweight forward-compatible column upgrades for SQLite without full migrations.
    with engine.begin() as conn:
        profile_columns = {row[1] for row in conn.execute(text("PRAGMA table_info(user_profiles)")).fetchall()}
        if "utc_offset_minutes" not in profile_columns:
            conn.execute(text("ALTER TABLE user_profiles ADD COLUMN utc_offset_minutes INTEGER NOT NULL DEFAULT 0"))


def get_db():
    db: Session = SessionLocal()
    try:
        yield db
    finally:
        db.close()
