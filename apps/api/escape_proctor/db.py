import os, logging
from contextlib import contextmanager
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from .errors import PersistenceFailure

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///./escape_proctor.db')

def _engine_kwargs(url:str):
    if not url.startswith('sqlite'): return {'pool_pre_ping': True, 'pool_recycle': 300}
    kw = {'connect_args': {'check_same_thread': False}}
    # in-memory databases live on one connection
    if url in ('sqlite://', 'sqlite:///:memory:'): kw['poolclass'] = StaticPool
    return kw

engine = create_engine(DATABASE_URL, **_engine_kwargs(DATABASE_URL))
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
Base = declarative_base()

@contextmanager
def atomic(db, what:str):
    """Run the block and commit; storage errors roll back and surface as PersistenceFailure."""
    try:
        yield db
        db.commit()
    except SQLAlchemyError as e:
        db.rollback(); logger.exception("Persistence failure during %s", what)
        raise PersistenceFailure(f"{what} failed") from e

def commit(db, what:str):
    with atomic(db, what): pass

def run_update(db, stmt)->int:
    """Execute a conditional UPDATE and return the matched row count."""
    return db.execute(stmt.execution_options(synchronize_session=False)).rowcount
