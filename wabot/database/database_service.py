"""
wabot/database/database_service.py
MongoDB store: motor client, collection handles and index bootstrap
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Dict, Optional

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import ConnectionFailure, PyMongoError

from ..errors import StoreUnavailable
from ..services.logging_service import LogLevel
from ..utils.config import Config
from ..utils.timeutil import utcnow
from .collection import Collection
from .indexes import indexes_for

logger = logging.getLogger(__name__)

_NAME_RE = re.compile(r"^[a-z_][a-z0-9_]*$")


class DatabaseService:
    """Handles database connection, collection bootstrap and connection management"""

    def __init__(self, config: Config, client=None):
        self.config = config
        self.client = client
        self.db = client[config.mongo_db_name] if client is not None else None
        self.chat_logger = None
        self.closed = False
        self._collections: Dict[str, Collection] = {}
        self._bootstrap_lock = asyncio.Lock()
        self.connection_stats = {
            "connections_created": 0,
            "connections_failed": 0,
            "queries_executed": 0,
            "queries_failed": 0,
            "collections_bootstrapped": 0,
            "startup_time": None,
        }

    def set_logger(self, chat_logger):
        """Set the chat logger for database lifecycle events"""
        self.chat_logger = chat_logger

    async def initialize(self) -> None:
        """Wait for MongoDB to answer a ping"""
        start_time = utcnow()
        self.connection_stats["startup_time"] = start_time
        logger.info(f"Initializing database service ({self.config.mongo_db_name})...")

        try:
            await self._wait_for_database()
        except PyMongoError as e:
            init_time = (utcnow() - start_time).total_seconds()
            logger.error(f"Failed to initialize database after {init_time:.2f}s: {e}")
            if self.chat_logger:
                await self.chat_logger.log_error(
                    service="Database Service",
                    error=e,
                    context=f"Database initialization failed after {init_time:.2f}s",
                )
            raise StoreUnavailable(str(e)) from e

        init_time = (utcnow() - start_time).total_seconds()
        logger.info(f"Database service initialized successfully in {init_time:.2f}s")
        if self.chat_logger:
            await self.chat_logger.log_custom(
                service="Database Service",
                title="Database Ready",
                description="MongoDB connection established",
                level=LogLevel.SUCCESS,
                fields={
                    "Database": self.config.mongo_db_name,
                    "Pool": f"{self.config.db_pool_min}-{self.config.db_pool_max}",
                    "Initialization Time": f"{init_time:.2f}s",
                },
            )

    def _create_client(self) -> AsyncIOMotorClient:
        return AsyncIOMotorClient(
            self.config.mongo_uri,
            minPoolSize=self.config.db_pool_min,
            maxPoolSize=self.config.db_pool_max,
            serverSelectionTimeoutMS=5000,
        )

    async def _wait_for_database(self):
        if self.client is None:
            self.client = self._create_client()
            self.db = self.client[self.config.mongo_db_name]
        attempts = max(1, int(self.config.db_connect_attempts))
        for attempt in range(attempts):
            try:
                await self.client.admin.command("ping")
                logger.info(f"Database '{self.config.mongo_db_name}' is ready")
                self.connection_stats["connections_created"] += 1
                return
            except ConnectionFailure as e:
                self.connection_stats["connections_failed"] += 1
                if attempt < attempts - 1:
                    logger.info(f"Database not ready (attempt {attempt + 1}/{attempts}), waiting... Error: {e}")
                    await asyncio.sleep(1)
                else:
                    logger.error(f"Failed to connect to database after {attempts} attempts: {e}")
                    raise

    async def get_collection(self, name: str) -> Collection:
        if self.closed:
            raise StoreUnavailable("Store is closed")
        coll = self._collections.get(name)
        if coll is not None:
            return coll
        if not _NAME_RE.match(name):
            raise ValueError(f"Invalid collection name: {name!r}")
        if self.db is None:
            raise StoreUnavailable("Database not initialized")

        async with self._bootstrap_lock:
            coll = self._collections.get(name)
            if coll is None:
                coll = Collection(self, name, self.db[name])
                await self._ensure_indexes(coll)
                self._collections[name] = coll
        return coll

    async def _ensure_indexes(self, coll: Collection) -> None:
        specs = indexes_for(coll.name)
        try:
            for spec in specs:
                await coll._raw.create_index(list(spec.keys), unique=spec.unique, name=spec.name(coll.name))
        except ConnectionFailure as e:
            raise StoreUnavailable(str(e)) from e
        self.connection_stats["collections_bootstrapped"] += 1
        logger.info(f"Bootstrapped collection '{coll.name}' ({len(specs)} declared index(es))")

    async def ping(self) -> float:
        """Round-trip latency in milliseconds; raises StoreUnavailable."""
        if self.closed:
            raise StoreUnavailable("Store is closed")
        if self.db is None:
            raise StoreUnavailable("Database not initialized")
        start = time.perf_counter()
        try:
            await self.db.command("ping")
        except ConnectionFailure as e:
            self.connection_stats["queries_failed"] += 1
            raise StoreUnavailable(str(e)) from e
        self.connection_stats["queries_executed"] += 1
        return (time.perf_counter() - start) * 1000

    async def close(self):
        """Close the client; later calls raise StoreUnavailable"""
        if self.closed:
            return
        logger.info("Closing database connections...")
        self.closed = True
        if self.client is not None:
            self.client.close()
            logger.info("MongoDB client closed")

    def get_stats(self) -> dict:
        stats = dict(self.connection_stats)
        if stats["startup_time"]:
            stats["uptime_seconds"] = (utcnow() - stats["startup_time"]).total_seconds()
            stats["startup_time"] = stats["startup_time"].isoformat()
        stats["collections"] = sorted(self._collections)
        return stats
