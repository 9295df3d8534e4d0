"""
Enumeration of the collections a reset operates on.

System collections (``system.*``) are driver/server internal and are never
touched by user-level operations.
"""

import logging

from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase

from ..constants import SYSTEM_COLLECTION_PREFIX

logger = logging.getLogger(__name__)


def is_system_collection(name: str) -> bool:
    """
    Check if a collection name is reserved for the server.

    Args:
        name: Collection name

    Returns:
        True if the name starts with the system prefix
    """
    return name.startswith(SYSTEM_COLLECTION_PREFIX)


async def list_resettable_collections(
    db: AsyncIOMotorDatabase,
) -> list[AsyncIOMotorCollection]:
    """
    List the user collections of a database.

    The list is read from the server on every call, in server order, with
    system collections filtered out.

    Args:
        db: Database to enumerate

    Returns:
        Collection handles for every non-system collection
    """
    names = await db.list_collection_names()
    resettable = [name for name in names if not is_system_collection(name)]
    skipped = len(names) - len(resettable)
    if skipped:
        logger.debug(f"Skipping {skipped} system collection(s) in '{db.name}'")
    return [db[name] for name in resettable]
