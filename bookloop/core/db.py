import logging
from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from bookloop.configs import DB_URI, DEBUG

logger = logging.getLogger(__name__)


def make_engine(uri=DB_URI, echo=DEBUG):
    engine_kwargs = {'echo': echo}
    if uri.startswith('sqlite'):
        # one shared connection so every thread sees the same in-memory db
        engine_kwargs['connect_args'] = {'check_same_thread': False}
        engine_kwargs['poolclass'] = StaticPool
    else:
        engine_kwargs['client_encoding'] = 'utf8'
        engine_kwargs['pool_pre_ping'] = True
    return create_engine(uri, **engine_kwargs)


engine = make_engine()
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
session = scoped_session(SessionLocal)


class BookloopBase:
    @classmethod
    def get_many(cls, offset=None, limit=None, db=None):
        return (db or session).query(cls).order_by(cls.id).offset(offset).limit(limit).all()


Base = declarative_base(cls=BookloopBase)


def init(bind=None):
    # models must be registered on Base before create_all
    from bookloop.core import models  # noqa: F401
    try:
        Base.metadata.create_all(bind=bind or engine)
        return session
    except Exception as e:
        logger.warning(f"[WARNING] Database initialization failed: {e}")
