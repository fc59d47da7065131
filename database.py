import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings


logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent


def make_engine(database_url: str) -> Engine:
    is_sqlite = database_url.startswith("sqlite")
    connect_args: dict[str, object] = {}
    if is_sqlite:
        connect_args["check_same_thread"] = False
    eng = create_engine(database_url, connect_args=connect_args)
    if is_sqlite:
        event.listen(eng, "connect", _on_sqlite_connect)
    return eng


def _on_sqlite_connect(dbapi_conn, _record):
    # One writer at a time; readers keep going under WAL.
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.execute("PRAGMA busy_timeout=5000;")
    cursor.close()


engine = make_engine(get_settings().database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


@contextmanager
def session_scope() -> Iterator[Session]:
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def run_migrations(database_url: Optional[str] = None) -> None:
    """Upgrade the schema to the latest Alembic revision."""
    from alembic import command
    from alembic.config import Config

    cfg = Config(str(BASE_DIR / "alembic.ini"))
    # Keep the application's logging setup.
    cfg.attributes["configure_logger"] = False
    cfg.set_main_option("script_location", str(BASE_DIR / "alembic"))
    url = database_url or get_settings().database_url
    cfg.set_main_option("sqlalchemy.url", url)
    logger.info(f"migrations_upgrade: url={url}")
    command.upgrade(cfg, "head")
