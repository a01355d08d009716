"""
Database configuration and session management using SQLAlchemy.
"""
from sqlalchemy import create_engine, text
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from berries.config import settings

DATABASE_URL = settings.database_url


def build_engine(url: str):
    """Create an engine, applying the SQLite-specific configuration when needed."""
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=False  # Set to True for SQL query logging
        )
    return create_engine(url)


engine = build_engine(DATABASE_URL)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for models
Base = declarative_base()


def get_db():
    """
    Dependency function to get database session.
    Use this in FastAPI route dependencies.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None):
    """
    Initialize database by creating all tables and running safe, idempotent
    schema migrations.

    Currently this will:
    - Ensure the `users`, `chat_sessions` and `chat_messages` tables exist
    - Add `is_pinned` to `chat_sessions` and `kind` to `chat_messages` if they
      are missing (for databases created before those fields were added).
    """
    # Import models so they register on Base.metadata
    from berries import models  # noqa: F401

    bind = bind or engine

    # Create any missing tables first
    Base.metadata.create_all(bind=bind)

    # Lightweight migrations for SQLite
    if str(bind.url).startswith("sqlite"):
        with bind.connect() as conn:
            result = conn.execute(text("PRAGMA table_info(chat_sessions);"))
            chat_session_columns = {row[1] for row in result}  # row[1] = column name

            if chat_session_columns and "is_pinned" not in chat_session_columns:
                conn.execute(
                    text(
                        "ALTER TABLE chat_sessions "
                        "ADD COLUMN is_pinned BOOLEAN DEFAULT 0;"
                    )
                )

            result = conn.execute(text("PRAGMA table_info(chat_messages);"))
            chat_message_columns = {row[1] for row in result}

            if chat_message_columns and "kind" not in chat_message_columns:
                conn.execute(
                    text(
                        "ALTER TABLE chat_messages "
                        "ADD COLUMN kind VARCHAR DEFAULT 'text';"
                    )
                )
            conn.commit()
