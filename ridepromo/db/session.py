from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool

from ridepromo.core.config import settings


def _engine_options() -> dict:
    if settings.is_sqlite:
        # FastAPI runs sync endpoints on a threadpool
        return {"connect_args": {"check_same_thread": False}}
    return {
        "poolclass": QueuePool,
        "pool_size": 10,
        "max_overflow": 10,
        "pool_timeout": 30,
        "pool_recycle": 1800,
        "pool_pre_ping": True,
    }


engine = create_engine(settings.DATABASE_URL, echo=settings.DEBUG, **_engine_options())

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Yield a request-scoped session; coupon services commit or roll back themselves."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
