"""
MongoDB access for the library API.

A DatabaseDriver wraps one MongoClient and exposes the collection methods the
models need, scoped to a single active collection. Every scoped call checks
that connect() succeeded and that a collection was selected first.
"""
import logging
from typing import Any, List, Optional

from pymongo import ASCENDING, TEXT, MongoClient
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from errors import ApiError

logger = logging.getLogger(__name__)

MODULE_NAME = "DatabaseDriver"

BOOKS_COLLECTION = "books"
LOANS_COLLECTION = "loans"
TEXT_INDEX_NAME = "text_search_index"
TEXT_INDEX_FIELDS = ["author", "description", "format", "location", "publisher", "title"]


# Driver exceptions
class DatabaseConnectionError(ApiError):
    def __init__(self, server_address: str, server_port: int, error_message: str):
        super().__init__(
            f'Failed to connect to the MongoDB server at URL "{server_address}", port {server_port}!\n'
            f"The following error was encountered:\n{error_message}",
            500,
            MODULE_NAME,
        )
        self.server_address = server_address
        self.server_port = server_port


class DatabaseError(ApiError):
    def __init__(self, connection_string: str, error_message: str, module: str = MODULE_NAME, collection: str = ""):
        super().__init__(
            f'{error_message}\nMongoDB server: "{connection_string}"\nActive collection: "{collection}"',
            500,
            module,
        )


class DriverNotConnected(ApiError):
    def __init__(self, connection_string: str):
        super().__init__(
            "The database driver didn't initialize a connection to the MongoDB server "
            f"or the connection was lost/closed\nConnection string: {connection_string}",
            500,
            MODULE_NAME,
        )


class NoActiveCollection(ApiError):
    def __init__(self, connection_string: str):
        super().__init__(
            "The current database driver has no active collection! Please ensure that a collection "
            f"was set before making queries...\nConnection string: {connection_string}",
            500,
            MODULE_NAME,
        )


class DatabaseDriver:
    def __init__(self, server_address: str, server_port: int, database_name: str, client: Optional[MongoClient] = None):
        self._server_address = server_address
        self._server_port = server_port
        self._database_name = database_name
        self._connection_string = f"mongodb://{server_address}:{server_port}/{database_name}"
        self._client = client
        self._is_connected = False
        self._active_collection_name = ""
        self._active_collection: Optional[Collection] = None

    def connect(self) -> None:
        try:
            if self._client is None:
                self._client = MongoClient(self._connection_string)
            self._client.admin.command("ping")
        except PyMongoError as exc:
            logger.error(f"Connection to {self._server_address}:{self._server_port} failed: {exc}")
            raise DatabaseConnectionError(self._server_address, self._server_port, str(exc)) from exc
        self._is_connected = True
        logger.info(f"Connected to {self._connection_string}")

    def disconnect(self, force: bool = False) -> None:
        if self._client is None:
            return
        try:
            self._client.close()
        except PyMongoError as exc:
            raise DatabaseError(
                self._connection_string,
                f"Failed to close connection with the database!\nThe following error was encountered: {exc}",
            ) from exc
        finally:
            self._is_connected = False
            if force:
                self._active_collection = None
                self._active_collection_name = ""
        logger.info(f"Disconnected from {self._connection_string}")

    def _database(self):
        if not self._is_connected:
            raise DriverNotConnected(self._connection_string)
        return self._client[self._database_name]

    def _collection(self) -> Collection:
        if not self._is_connected:
            raise DriverNotConnected(self._connection_string)
        if self._active_collection is None:
            raise NoActiveCollection(self._connection_string)
        return self._active_collection

    def list_collections(self) -> List[str]:
        return self._database().list_collection_names()

    def create_collection(self, collection_name: str) -> None:
        self._database().create_collection(collection_name)

    def drop_collection(self, collection_name: str) -> None:
        self._database().drop_collection(collection_name)

    @property
    def active_collection(self) -> str:
        return self._active_collection_name

    @active_collection.setter
    def active_collection(self, collection_name: str) -> None:
        self._active_collection = self._database()[collection_name]
        self._active_collection_name = collection_name
        logger.debug(f"Active collection of {self._connection_string} set to {collection_name}")

    # Scoped collection operations
    def find(self, *args: Any, **kwargs: Any):
        return self._collection().find(*args, **kwargs)

    def find_one(self, *args: Any, **kwargs: Any):
        return self._collection().find_one(*args, **kwargs)

    def distinct(self, *args: Any, **kwargs: Any):
        return self._collection().distinct(*args, **kwargs)

    def insert_one(self, *args: Any, **kwargs: Any):
        return self._collection().insert_one(*args, **kwargs)

    def insert_many(self, *args: Any, **kwargs: Any):
        return self._collection().insert_many(*args, **kwargs)

    def update_one(self, *args: Any, **kwargs: Any):
        return self._collection().update_one(*args, **kwargs)

    def update_many(self, *args: Any, **kwargs: Any):
        return self._collection().update_many(*args, **kwargs)

    def find_one_and_update(self, *args: Any, **kwargs: Any):
        return self._collection().find_one_and_update(*args, **kwargs)

    def delete_one(self, *args: Any, **kwargs: Any):
        return self._collection().delete_one(*args, **kwargs)

    def delete_many(self, *args: Any, **kwargs: Any):
        return self._collection().delete_many(*args, **kwargs)

    def create_index(self, *args: Any, **kwargs: Any):
        return self._collection().create_index(*args, **kwargs)

    @property
    def connection_string(self) -> str:
        return self._connection_string

    @property
    def database_name(self) -> str:
        return self._database_name

    @property
    def is_connected(self) -> bool:
        return self._is_connected


def initialize_database(driver: DatabaseDriver) -> None:
    """Create the collections and indexes the API relies on.

    Safe to run on every startup: existing collections are kept and
    create_index is a no-op for an index that already exists.
    """
    try:
        existing = set(driver.list_collections())
        for collection_name in (BOOKS_COLLECTION, LOANS_COLLECTION):
            if collection_name not in existing:
                driver.create_collection(collection_name)
                logger.info(f"Created collection {collection_name}")
        driver.active_collection = BOOKS_COLLECTION
        driver.create_index([("isbn", ASCENDING)], unique=True)
        driver.create_index([(field, TEXT) for field in TEXT_INDEX_FIELDS], name=TEXT_INDEX_NAME)
    except PyMongoError as exc:
        raise DatabaseError(
            driver.connection_string,
            f"Failed to initialize the database! The following exception was encountered: {exc}",
            collection=driver.active_collection,
        ) from exc
