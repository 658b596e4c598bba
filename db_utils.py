"""Database utility functions for MongoDB interaction."""

import logging
import os
from contextlib import contextmanager
from typing import Generator, Optional
from urllib.parse import quote_plus

import pymongo
from pymongo.errors import ConnectionFailure, PyMongoError
from dotenv import load_dotenv

from constants import DB_NAME

load_dotenv()
logger = logging.getLogger('vsprov.db')


def build_mongo_uri() -> Optional[str]:
    """MongoDB URI from MONGO_HOST, MONGO_USER and MONGO_PASSWORD, or None when no host is set."""
    host = os.getenv("MONGO_HOST")
    if not host:
        return None
    user = quote_plus(os.getenv("MONGO_USER", "vsprov"))
    password = quote_plus(os.getenv("MONGO_PASSWORD", ""))
    return f"mongodb://{user}:{password}@{host}:27017/{DB_NAME}"


MONGO_URI = build_mongo_uri()


@contextmanager
def mongo_client(uri: Optional[str] = None) -> Generator[Optional[pymongo.MongoClient], None, None]:
    """Context manager for MongoDB client. Yields the client or None on failure."""
    uri = uri or MONGO_URI
    client: Optional[pymongo.MongoClient] = None
    if not uri:
        logger.error("MongoDB URI not set. Cannot create client.")
        yield None
        return

    try:
        client = pymongo.MongoClient(uri, serverSelectionTimeoutMS=10000)
        client.admin.command('ping')
        logger.debug("Opened MongoDB connection.")
    except (ConnectionFailure, PyMongoError) as e:
        logger.critical(f"MongoDB connection failed: {e}")
        if client:
            client.close()
        yield None
        return

    try:
        yield client
    finally:
        client.close()
        logger.debug("Closed MongoDB connection.")
