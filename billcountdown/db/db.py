from .models import Base
from .session import engine

from billcountdown.utils.logging import get_logger

logger = get_logger()


def create_tables():
    """Create any missing tables; existing tables are left untouched."""
    Base.metadata.create_all(engine)
    logger.info("Created all tables.")


if __name__ == "__main__":
    create_tables()
