"""Database connection and session management."""

from pathlib import Path
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.orm.exc import StaleDataError

from .schema import Base
from ..errors import ConcurrentModification
from ..utils import get_logger


logger = get_logger(__name__)


class Database:
    """
    Database connection manager for SQLite.

    Handles database creation, connection management, and session lifecycle.

    Attributes:
        db_path: Path to SQLite database file
        engine: SQLAlchemy engine
        SessionLocal: Session factory

    Example:
        >>> db = Database("data/mailhook.db")
        >>> db.create_tables()
        >>> with db.get_session() as session:
        ...     repo = MailboxRepository(session)
    """

    def __init__(self, db_path: str = "data/mailhook.db"):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self.engine = create_engine(
            f"sqlite:///{self.db_path}",
            echo=False,
            connect_args={
                "check_same_thread": False,  # Sessions are used from worker threads
                "timeout": 30,
            }
        )

        @event.listens_for(self.engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine
        )

        logger.info(f"Database initialized: {self.db_path}")

    def create_tables(self) -> None:
        """Create the mailbox tables if they don't already exist."""
        try:
            Base.metadata.create_all(bind=self.engine)
            logger.info("Database tables created successfully")
        except Exception as e:
            logger.error(f"Failed to create tables: {e}")
            raise

    def drop_tables(self) -> None:
        """
        Drop all tables from the database.

        WARNING: This deletes every checkpoint, token and subscription.
        """
        try:
            Base.metadata.drop_all(bind=self.engine)
            logger.warning("All database tables dropped")
        except Exception as e:
            logger.error(f"Failed to drop tables: {e}")
            raise

    @contextmanager
    def get_session(self) -> Session:
        """
        Get a database session context manager.

        Yields a session that will automatically commit on success or
        rollback on error. A lost optimistic-concurrency race surfaces as
        ConcurrentModification.

        Yields:
            SQLAlchemy session

        Example:
            >>> with db.get_session() as session:
            ...     state = session.get(MailboxState, "primary")
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except StaleDataError as e:
            session.rollback()
            logger.warning(f"Concurrent update rejected: {e}")
            raise ConcurrentModification(str(e)) from e
        except Exception as e:
            session.rollback()
            logger.error(f"Session error: {e}")
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        """Release pooled connections."""
        self.engine.dispose()

    def __repr__(self) -> str:
        """Return string representation."""
        return f"<Database(path={self.db_path})>"
