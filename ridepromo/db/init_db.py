import logging

from sqlalchemy.engine import Engine

from ridepromo.db.base import Base

logger = logging.getLogger(__name__)


def init_db(engine: Engine) -> None:
    """Create any missing tables for the registered models."""
    Base.metadata.create_all(bind=engine)
    logger.info("database_initialized tables=%s", ",".join(sorted(Base.metadata.tables)))


if __name__ == "__main__":
    from ridepromo.db.session import engine
    init_db(engine)
