"""Initialize database tables."""
from sqlmodel import SQLModel

from tasksync.config import SETTINGS
from tasksync.db.config import engine
from tasksync.models.task import Task  # noqa: F401
from tasksync.models.user import User  # noqa: F401
from tasksync.utils.logger import get_logger

logger = get_logger("tasksync.db")


def init_db(bind=None):
    """Create all tables in the database."""
    bind = bind if bind is not None else engine
    if SETTINGS.reset_db_on_startup:
        logger.warning("Dropping and recreating tables", reason="RESET_DB_ON_STARTUP")
        SQLModel.metadata.drop_all(bind)

    SQLModel.metadata.create_all(bind)
    logger.info("Tables created successfully")


if __name__ == "__main__":
    init_db()
