#!/usr/bin/env python3
import argparse
import logging
import os
import sys

from dotenv import load_dotenv

# Ensure repository root is on sys.path
CURRENT_DIR = os.path.dirname(os.path.abspath(__file__))
REPO_ROOT = os.path.dirname(CURRENT_DIR)
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

load_dotenv()

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger("propass.migrate")


def main():
    parser = argparse.ArgumentParser(description="Idempotent schema setup for PROPASS.")
    parser.add_argument("--dsn", dest="dsn", help="Database DSN (defaults to DATABASE_URL)")
    args = parser.parse_args()

    from propass.config import database_url
    from propass.db import get_engine
    from propass.models import Base

    dsn = args.dsn or database_url()
    engine = get_engine(dsn)
    logger.info("Ensuring tables via SQLAlchemy metadata...")
    Base.metadata.create_all(engine)
    for table in Base.metadata.sorted_tables:
        logger.info("OK: %s ready", table.name)
    engine.dispose()


if __name__ == "__main__":
    main()
