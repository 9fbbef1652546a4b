# marketplace/database.py
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from flask import g

from marketplace.config import Config

engine_kwargs = {
    "echo": Config.SQL_ECHO,
    "future": True,
    "pool_pre_ping": True,
}

if Config.DATABASE_URL.startswith("sqlite"):
    # Flask's dev server and the test client hand sessions across threads
    engine_kwargs["connect_args"] = {"check_same_thread": False}
else:
    engine_kwargs["pool_size"] = Config.DB_POOL_SIZE
    engine_kwargs["max_overflow"] = Config.DB_MAX_OVERFLOW

engine = create_engine(Config.DATABASE_URL, **engine_kwargs)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)

Base = declarative_base()


def init_db():
    # Importing models registers every table on Base.metadata
    from marketplace import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def get_db():
    if 'db' not in g:
        g.db = SessionLocal()
    return g.db


def close_db(e=None):
    try:
        db = g.pop('db', None)
        if db is not None:
            if e is not None:
                db.rollback()
            db.close()
    except RuntimeError:
        # Outside of an application context (test teardown)
        pass
