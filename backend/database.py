"""
Database connection and snapshot backend selection

MongoDB is optional: the credit wallet keeps its state in memory and only
writes snapshots to a durable backend. Without MONGO_URL/DB_NAME the JSON
file backend (CREDITS_DATA_DIR) or memory-only operation is used.
"""
from motor.motor_asyncio import AsyncIOMotorClient
import logging
from pathlib import Path
from typing import Optional, Tuple
from dotenv import load_dotenv

from credit_wallet.persistence import JsonFileBackend, MongoSnapshotBackend, SnapshotBackend
from utils.environment import AppSettings

logger = logging.getLogger(__name__)

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')


def create_mongo_client(mongo_url: str) -> AsyncIOMotorClient:
    try:
        return AsyncIOMotorClient(
            mongo_url,
            maxPoolSize=10,
            connectTimeoutMS=5000,
            serverSelectionTimeoutMS=5000,
            retryWrites=True
        )
    except Exception as e:
        raise ValueError(f"Failed to create MongoDB client: {e}")


async def check_db_connection(client: AsyncIOMotorClient, db_name: str) -> Tuple[bool, Optional[str]]:
    """
    Test database connection health.

    Returns:
        Tuple[bool, Optional[str]]: (success, error_message)
    """
    try:
        await client.admin.command('ping')
        logger.info(f"Database connected successfully: {db_name}")
        return True, None
    except Exception as e:
        error_msg = f"Database connection failed: {e}"
        logger.error(error_msg)
        return False, error_msg


def select_snapshot_backend(settings: AppSettings) -> Tuple[Optional[SnapshotBackend], Optional[AsyncIOMotorClient]]:
    """
    Pick the durable snapshot backend from settings.

    Returns:
        (backend or None for memory-only, mongo client to close at shutdown)
    """
    if settings.mongo_url and settings.db_name:
        try:
            client = create_mongo_client(settings.mongo_url)
        except ValueError as e:
            logger.error(f"{e} - falling back to file/memory persistence")
        else:
            logger.info(f"Credit snapshots: MongoDB ({settings.db_name})")
            return MongoSnapshotBackend(client[settings.db_name]), client

    if settings.credits_data_dir:
        logger.info(f"Credit snapshots: JSON files in {settings.credits_data_dir}")
        return JsonFileBackend(settings.credits_data_dir), None

    logger.warning("No persistence configured (MONGO_URL/DB_NAME or CREDITS_DATA_DIR). Credits are memory-only.")
    return None, None
