from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()
engine = None
SessionLocal = None


def init_db(database_url: str):
    global engine, SessionLocal
    if engine is None:
        connect_args = {}
        if database_url.startswith("sqlite"):
            # sessions are used from the consumer thread as well as request threads
            connect_args = {"check_same_thread": False, "timeout": 30}
        engine = create_engine(database_url, connect_args=connect_args)
        SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        # create tables
        from admissions import models
        Base.metadata.create_all(bind=engine)


def dispose_db():
    global engine, SessionLocal
    if engine is not None:
        engine.dispose()
    engine = None
    SessionLocal = None


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
