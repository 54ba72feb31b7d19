#!/usr/bin/env python3
"""
MSSQL Bridge Connection Check

Verifies the MSSQL_* settings by opening the same pool the bridge uses
and printing the server version. Run this before deploying the bridge.
"""

import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import logging

from mssql_bridge.config import load_settings, validate_config
from mssql_bridge.db.connection import PoolManager
from mssql_bridge.db.queries import QueryExecutor
from mssql_bridge.errors import BridgeError

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def main():
    """Main check function."""
    env_file = sys.argv[1] if len(sys.argv) > 1 else None
    settings = load_settings(env_file)

    logger.info("=" * 60)
    logger.info("MSSQL Bridge Connection Check")
    logger.info("=" * 60)

    try:
        validate_config(settings)
    except ValueError as e:
        logger.error(str(e))
        sys.exit(1)

    logger.info(f"Target: {settings.describe()} (encrypt={settings.encrypt})")

    pool = PoolManager(settings)
    try:
        rows = QueryExecutor(pool).execute(
            "SELECT @@VERSION AS version, DB_NAME() AS database_name"
        )
    except BridgeError as e:
        logger.error(f"Connection check failed: {e.message}")
        sys.exit(1)
    finally:
        pool.close()

    row = rows[0] if rows else {}
    logger.info(f"Database: {row.get('database_name')}")
    logger.info(f"Server:   {(row.get('version') or '').splitlines()[0] if row.get('version') else '?'}")
    logger.info("✓ Connection OK")


if __name__ == '__main__':
    main()
