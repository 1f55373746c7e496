"""Create the school bot tables.

Usage: ``python -m database.init_db [DATABASE_URL]``. Without an argument the
URL comes from the environment (``DATABASE_URL``).
"""

import asyncio
import logging
import sys
from typing import Optional

from database.connection import check_db_connection, close_db, configure_engine, init_db
from database.models import Base

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def main(url: Optional[str] = None):
    """Create every table in the configured database."""
    if url:
        configure_engine(url)
    try:
        if not await check_db_connection():
            raise RuntimeError("Database is not reachable")
        logger.info(f"Creating tables: {', '.join(sorted(Base.metadata.tables))}")
        await init_db()
        logger.info("Database ready")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise
    finally:
        await close_db()


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else None))
