from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from prayer_guard.config import settings

DATABASE_URL = str(settings.db_url)

# Sessions are short and synchronous; every store call opens its own.
engine = create_engine(
    DATABASE_URL,
    echo=settings.debug,
)


def make_session_factory(bind) -> sessionmaker:
    return sessionmaker(bind=bind, autocommit=False, autoflush=False, expire_on_commit=False)


SessionLocal = make_session_factory(engine)


@contextmanager
def session_scope(factory=None):
    """Yield a session that commits on success and rolls back on error."""
    session = (factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
