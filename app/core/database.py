from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from app.core.config import settings


def _configure_sqlite(engine: AsyncEngine) -> None:
    """Enforce foreign keys and take the write lock at the start of every
    SQLite transaction.

    SQLite has no SELECT ... FOR UPDATE, so two submissions could both read
    an item's running total before either writes. BEGIN IMMEDIATE makes the
    second transaction wait until the first one commits.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # hand transaction control to the "begin" hook below
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(db_url: str) -> AsyncEngine:
    if db_url.startswith("sqlite"):
        engine = create_async_engine(
            db_url,
            echo=False,
            connect_args={"timeout": settings.SQLITE_BUSY_TIMEOUT_SECONDS},
        )
        _configure_sqlite(engine)
        return engine
    return create_async_engine(db_url, echo=False, pool_pre_ping=True)


def build_sessionmaker(bind: AsyncEngine) -> sessionmaker:
    return sessionmaker(
        bind=bind,
        expire_on_commit=False,
        class_=AsyncSession
    )


engine = build_engine(settings.DATABASE_URL)
SessionLocal = build_sessionmaker(engine)

Base = declarative_base()


async def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        await db.close()


async def init_db():
    # local import so every model is registered on Base.metadata
    import app.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
