from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy import create_engine
from starlette.requests import HTTPConnection
from .config import settings


def make_engine(database_url: str):
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            future=True,
            connect_args={"check_same_thread": False},
        )
    # Configure connection pool for server databases
    return create_engine(
        database_url,
        future=True,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        pool_recycle=3600,  # Recycle connections after 1 hour
    )


def make_session_factory(bind) -> sessionmaker:
    return sessionmaker(bind=bind, autoflush=False, autocommit=False, future=True)


engine = make_engine(settings.database_url)

# Fresh Session per unit of work; never shared across threads
SessionLocal = make_session_factory(engine)

Base = declarative_base()


def get_session_factory(conn: HTTPConnection) -> sessionmaker:
    return getattr(conn.app.state, "session_factory", SessionLocal)


def get_db(conn: HTTPConnection):
    db = get_session_factory(conn)()
    try:
        yield db
    finally:
        db.close()
