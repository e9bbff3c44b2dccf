from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from authcore.core.config import settings


def _engine_kwargs(database_url: str) -> dict:
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return kwargs
    return {"pool_pre_ping": True}


engine = create_engine(
    settings.database_url,
    echo=settings.sql_echo,
    **_engine_kwargs(settings.database_url),
)


def create_db_and_tables():
    """Create every table registered on the SQLModel metadata"""
    # Register the table models before touching the metadata
    import authcore.models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def get_session():
    """Database session per request"""
    with Session(engine) as session:
        yield session
