from typing import Iterator, Optional

from fastapi import Request
from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool


Base = declarative_base()


class Store:
    """
    Handle on the relational store shared by every request.

    Built once at process start and disposed at shutdown. On SQLite every
    transaction is opened with BEGIN IMMEDIATE so concurrent writers are
    serialized by the database lock; other backends rely on row locks
    taken with SELECT ... FOR UPDATE in the services.
    """

    def __init__(self, database_url: str, busy_timeout_s: int = 30, echo: bool = False):
        self.database_url = database_url
        self.is_sqlite = database_url.startswith("sqlite")
        self.in_memory = self.is_sqlite and (database_url in ("sqlite://", "sqlite:///:memory:"))

        if self.in_memory:
            # One shared connection, otherwise each checkout sees an empty database
            self.engine = create_engine(
                database_url,
                future=True,
                echo=echo,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        elif self.is_sqlite:
            self.engine = create_engine(
                database_url,
                future=True,
                echo=echo,
                connect_args={"check_same_thread": False, "timeout": busy_timeout_s},
            )
        else:
            self.engine = create_engine(
                database_url,
                future=True,
                echo=echo,
                pool_pre_ping=True,
                pool_size=5,
                max_overflow=10,
                pool_recycle=3600,
            )

        if self.is_sqlite:
            _use_immediate_transactions(self.engine)

        # Fresh Session per request; never share one across threads
        self.SessionLocal = sessionmaker(
            bind=self.engine, autoflush=False, autocommit=False, expire_on_commit=False, future=True
        )

    def session(self) -> Session:
        return self.SessionLocal()

    def create_all(self) -> None:
        from .models import models  # noqa: F401  registers tables on Base.metadata

        Base.metadata.create_all(bind=self.engine)

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def dispose(self) -> None:
        self.engine.dispose()


def _use_immediate_transactions(engine) -> None:
    # pysqlite defers BEGIN until the first write; take the write lock up front instead
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        dbapi_connection.execute("PRAGMA foreign_keys=ON")

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def get_db(request: Request) -> Iterator[Session]:
    store: Store = request.app.state.store
    db = store.session()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def build_store(database_url: Optional[str] = None, busy_timeout_s: Optional[int] = None) -> Store:
    from .config import settings

    return Store(
        database_url or settings.database_url,
        busy_timeout_s=busy_timeout_s if busy_timeout_s is not None else settings.sqlite_busy_timeout_s,
    )
