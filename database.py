from supabase import create_client
import logging
import threading
from contextlib import contextmanager
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from config import Config

logger = logging.getLogger(__name__)

Base = declarative_base()


def make_session_factory(database_url=None):
    """Create a sessionmaker bound to the on-device store and make sure its tables exist."""
    url = database_url or Config.PERSONAL_STORE_DB_URL
    engine_kwargs = {}
    if url.startswith('sqlite'):
        engine_kwargs['connect_args'] = {'check_same_thread': False}
        if url in ('sqlite://', 'sqlite:///:memory:'):
            # One shared connection, otherwise every session sees its own empty database
            engine_kwargs['poolclass'] = StaticPool

    engine = create_engine(url, **engine_kwargs)
    init_db(engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine):
    # Import here so the model is registered on Base before create_all
    from models.blob import StoredBlob  # noqa: F401
    Base.metadata.create_all(bind=engine)
    logger.info(f"Personal store tables ready on {engine.url}")


@contextmanager
def get_db_session(session_factory):
    """Provide a transactional scope around a series of SQLAlchemy operations."""
    db = session_factory()
    try:
        yield db
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"SQLAlchemy Session Error: {e}")
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"General Session Error: {e}")
        raise
    finally:
        db.close()


# --- Supabase Client Logic ---
_cloud_client = None
_cloud_client_lock = threading.Lock()


def get_supabase():
    """Return the shared Supabase client, creating it on first use.

    Raises ValueError when the project URL or key is not configured; callers
    treat that as "no cloud" and keep the personal store local-only.
    """
    global _cloud_client
    if _cloud_client is not None:
        return _cloud_client

    with _cloud_client_lock:
        if _cloud_client is None:
            if not Config.SUPABASE_URL or not Config.SUPABASE_KEY:
                raise ValueError("SUPABASE_URL or SUPABASE_SERVICE_KEY/SUPABASE_ANON_KEY not found")
            logger.info(f"Creating Supabase client for {Config.SUPABASE_URL}")
            _cloud_client = create_client(Config.SUPABASE_URL, Config.SUPABASE_KEY)
    return _cloud_client
