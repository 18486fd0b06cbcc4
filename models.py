"""
Document models for the library catalog.

Each model instance holds a copy of one MongoDB document plus a change set.
Assigning to a tracked attribute updates the local copy and stages the value;
nothing reaches the database until commit_changes() is called.

Collections:
- books
- loans
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo.errors import DuplicateKeyError, PyMongoError

from database import BOOKS_COLLECTION, LOANS_COLLECTION, DatabaseDriver, DatabaseError
from errors import ApiError

logger = logging.getLogger(__name__)

BOOK_FIELDS = (
    "isbn",
    "title",
    "author",
    "categories",
    "publisher",
    "edition",
    "format",
    "date",
    "pages",
    "copies",
    "description",
    "location",
)

LOAN_FIELDS = ("reader", "phone", "bookId", "bookTitle", "startDate", "endDate", "renew")


def utcnow() -> datetime:
    # pymongo hands back naive UTC datetimes, compare against the same
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ModelError(ApiError):
    def __init__(self, model_name: str, collection_name: str, error_message: str, status_code: int = 500):
        super().__init__(
            f'An error was encountered on the {model_name} model (collection "{collection_name}"): {error_message}',
            status_code,
            model_name,
        )


class TrackedField:
    """Attribute backed by a document key; every assignment is staged for commit."""

    def __init__(self, document_key: Optional[str] = None):
        self.document_key = document_key

    def __set_name__(self, owner, name):
        if self.document_key is None:
            self.document_key = name

    def __get__(self, instance, owner=None):
        if instance is None:
            return self
        return instance._values.get(self.document_key)

    def __set__(self, instance, value):
        instance._stage(self.document_key, value)


class Model(ABC):
    collection_name = ""
    fields: Tuple[str, ...] = ()

    def __init__(self, driver: DatabaseDriver, document: Dict[str, Any]):
        self._collection = driver
        self._id = document["_id"]
        self._values: Dict[str, Any] = {}
        self._change_set: Dict[str, Any] = {}
        self._load(document)

    @staticmethod
    def is_valid_id(value: Any) -> bool:
        if isinstance(value, ObjectId):
            return True
        return isinstance(value, str) and len(value) == 24 and ObjectId.is_valid(value)

    @staticmethod
    def get_id_from_string(value: str) -> ObjectId:
        return ObjectId(value)

    @classmethod
    def is_valid_field_name(cls, field_name: str) -> bool:
        return field_name in cls.fields

    @classmethod
    def _add_new(cls, driver: DatabaseDriver, data: Dict[str, Any]) -> ObjectId:
        try:
            result = driver.insert_one(data)
        except DuplicateKeyError as exc:
            raise ModelError(
                cls.__name__,
                cls.collection_name,
                f"A document with the same unique key already exists: {exc.details or exc}",
                409,
            ) from exc
        except PyMongoError as exc:
            raise DatabaseError(
                driver.connection_string,
                f"Failed to create a new document! The following exception was encountered: {exc}",
                "Model",
                driver.active_collection,
            ) from exc
        if not result.acknowledged:
            raise DatabaseError(
                driver.connection_string,
                "Failed to create a new document! The operation was not acknowledged by the database.",
                "Model",
                driver.active_collection,
            )
        return result.inserted_id

    @classmethod
    def _find_by(cls, driver: DatabaseDriver, query: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        try:
            return driver.find_one(query)
        except PyMongoError as exc:
            raise DatabaseError(
                driver.connection_string,
                f"Failed to fetch a document matching {query}! The following exception was encountered: {exc}",
                "Model",
                driver.active_collection,
            ) from exc

    @classmethod
    def _query(
        cls,
        driver: DatabaseDriver,
        query: Optional[Dict[str, Any]] = None,
        skip: int = 0,
        limit: int = 0,
        sort: Optional[Dict[str, int]] = None,
    ) -> List["Model"]:
        try:
            cursor = driver.find(query or {})
            if sort:
                cursor = cursor.sort(list(sort.items()))
            if skip:
                cursor = cursor.skip(skip)
            if limit:
                cursor = cursor.limit(limit)
            return [cls(driver, document) for document in cursor]
        except PyMongoError as exc:
            raise DatabaseError(
                driver.connection_string,
                f"Failed to run the query {query}! The following exception was encountered: {exc}",
                "Model",
                driver.active_collection,
            ) from exc

    @classmethod
    def _distinct(cls, driver: DatabaseDriver, field_name: str) -> List[Any]:
        if not cls.is_valid_field_name(field_name):
            raise ModelError(cls.__name__, cls.collection_name, f'"{field_name}" is not a field of the model', 400)
        try:
            return driver.distinct(field_name)
        except PyMongoError as exc:
            raise DatabaseError(
                driver.connection_string,
                f'Failed to list the values of "{field_name}"! The following exception was encountered: {exc}',
                "Model",
                driver.active_collection,
            ) from exc

    @classmethod
    def _delete_by_id(cls, driver: DatabaseDriver, document_id: ObjectId) -> bool:
        try:
            result = driver.delete_one({"_id": document_id})
        except PyMongoError as exc:
            raise DatabaseError(
                driver.connection_string,
                f"Failed to delete the document with id: {document_id}! The following exception was encountered: {exc}",
                "Model",
                driver.active_collection,
            ) from exc
        if not result.acknowledged:
            raise DatabaseError(
                driver.connection_string,
                f"Failed to delete the document with id: {document_id}! The operation was not acknowledged by the database.",
                "Model",
                driver.active_collection,
            )
        return result.deleted_count > 0

    def _load(self, document: Dict[str, Any]) -> None:
        self._values = {key: document.get(key) for key in self.fields}
        self._change_set = {}

    def _stage(self, key: str, value: Any) -> None:
        self._values[key] = value
        self._change_set[key] = value

    def update_fields(self, values: Dict[str, Any]) -> None:
        unknown = [key for key in values if key not in self.fields]
        if unknown:
            raise ModelError(
                type(self).__name__,
                self.collection_name,
                f"Cannot update unknown fields: {', '.join(unknown)}",
                400,
            )
        for key, value in values.items():
            self._stage(key, value)

    def commit_changes(self) -> None:
        if not self.was_edited:
            return
        try:
            result = self._collection.update_one({"_id": self._id}, {"$set": self._change_set})
        except PyMongoError as exc:
            raise DatabaseError(
                self._collection.connection_string,
                f"Failed to update the document with id: {self._id}! The following exception was encountered: {exc}",
                "Model",
                self._collection.active_collection,
            ) from exc
        if not result.acknowledged:
            raise DatabaseError(
                self._collection.connection_string,
                f"Failed to update the document with id: {self._id}! The operation was not acknowledged by the database.",
                "Model",
                self._collection.active_collection,
            )
        logger.debug(f"Committed {sorted(self._change_set)} on {self.collection_name}/{self._id}")
        self._change_set = {}

    def reload(self) -> None:
        try:
            document = self._collection.find_one({"_id": self._id})
        except PyMongoError as exc:
            raise ModelError(
                type(self).__name__,
                self.collection_name,
                f"Failed to reload the model instance data! The following exception was encountered: {exc}",
            ) from exc
        if document is None:
            raise ModelError(
                type(self).__name__,
                self.collection_name,
                f'Failed to reload the model instance data! The document with id="{self._id}" no longer exists',
                404,
            )
        self._load(document)

    def delete(self) -> bool:
        return type(self)._delete_by_id(self._collection, self._id)

    @abstractmethod
    def get_all_fields(self) -> Dict[str, Any]:
        ...

    @property
    def id(self) -> ObjectId:
        return self._id

    @property
    def was_edited(self) -> bool:
        return len(self._change_set) > 0


class Book(Model):
    collection_name = BOOKS_COLLECTION
    fields = BOOK_FIELDS

    isbn = TrackedField()
    title = TrackedField()
    author = TrackedField()
    categories = TrackedField()
    publisher = TrackedField()
    edition = TrackedField()
    format = TrackedField()
    date = TrackedField()
    pages = TrackedField()
    copies = TrackedField()
    description = TrackedField()
    location = TrackedField()

    @classmethod
    def create_book(cls, driver: DatabaseDriver, new_book_data: Dict[str, Any]) -> "Book":
        data = dict(new_book_data)
        new_id = cls._add_new(driver, data)
        return cls(driver, {**data, "_id": new_id})

    @classmethod
    def get_book_by_id(cls, driver: DatabaseDriver, book_id: ObjectId) -> "Book":
        document = cls._find_by(driver, {"_id": book_id})
        if document is None:
            raise ModelError(
                cls.__name__,
                cls.collection_name,
                f'A book with id="{book_id}" was not found on the database (no data returned)',
                404,
            )
        return cls(driver, document)

    @classmethod
    def get_book_by_isbn(cls, driver: DatabaseDriver, isbn: str) -> "Book":
        document = cls._find_by(driver, {"isbn": isbn})
        if document is None:
            raise ModelError(
                cls.__name__,
                cls.collection_name,
                f'A book with the ISBN "{isbn}" was not found on the database (no data returned)',
                404,
            )
        return cls(driver, document)

    @classmethod
    def query_books(
        cls,
        driver: DatabaseDriver,
        query: Optional[Dict[str, Any]] = None,
        skip: int = 0,
        limit: int = 0,
        sort: Optional[Dict[str, int]] = None,
    ) -> List["Book"]:
        return cls._query(driver, query, skip, limit, sort)

    @classmethod
    def text_search(
        cls,
        driver: DatabaseDriver,
        search_query: str,
        query: Optional[Dict[str, Any]] = None,
        skip: int = 0,
        limit: int = 0,
        sort: Optional[Dict[str, int]] = None,
        language: str = "portuguese",
    ) -> List["Book"]:
        """Free-text search over the books text index, narrowed by ``query``.

        Matching is case-insensitive and diacritic-sensitive.
        """
        text_query = {
            "$text": {
                "$search": search_query,
                "$language": language,
                "$caseSensitive": False,
                "$diacriticSensitive": True,
            }
        }
        text_query.update(query or {})
        return cls._query(driver, text_query, skip, limit, sort)

    @classmethod
    def get_distinct_field_values(cls, driver: DatabaseDriver, field_name: str) -> List[Any]:
        return cls._distinct(driver, field_name)

    @classmethod
    def delete_book_by_id(cls, driver: DatabaseDriver, book_id: ObjectId) -> bool:
        return cls._delete_by_id(driver, book_id)

    def get_all_fields(self) -> Dict[str, Any]:
        return {"_id": self.id, **self._values}


class Loan(Model):
    collection_name = LOANS_COLLECTION
    fields = LOAN_FIELDS

    reader = TrackedField()
    phone = TrackedField()
    book_id = TrackedField("bookId")
    book_title = TrackedField("bookTitle")
    end_date = TrackedField("endDate")
    renew = TrackedField()

    @classmethod
    def create_loan(cls, driver: DatabaseDriver, new_loan_data: Dict[str, Any]) -> "Loan":
        data = dict(new_loan_data)
        new_id = cls._add_new(driver, data)
        return cls(driver, {**data, "_id": new_id})

    @classmethod
    def get_loan_by_id(cls, driver: DatabaseDriver, loan_id: ObjectId) -> "Loan":
        document = cls._find_by(driver, {"_id": loan_id})
        if document is None:
            raise ModelError(
                cls.__name__,
                cls.collection_name,
                f'A loan with id="{loan_id}" was not found on the database (no data returned)',
                404,
            )
        return cls(driver, document)

    @classmethod
    def query_loans(
        cls,
        driver: DatabaseDriver,
        query: Optional[Dict[str, Any]] = None,
        skip: int = 0,
        limit: int = 0,
        sort: Optional[Dict[str, int]] = None,
    ) -> List["Loan"]:
        return cls._query(driver, query, skip, limit, sort)

    @classmethod
    def get_distinct_field_values(cls, driver: DatabaseDriver, field_name: str) -> List[Any]:
        return cls._distinct(driver, field_name)

    @classmethod
    def delete_loan_by_id(cls, driver: DatabaseDriver, loan_id: ObjectId) -> bool:
        return cls._delete_by_id(driver, loan_id)

    @property
    def start_date(self) -> datetime:
        return self._values.get("startDate")

    @start_date.setter
    def start_date(self, start_date: datetime) -> None:
        # Moving the start keeps the loan length
        duration = self.duration
        self._stage("startDate", start_date)
        self.end_date = start_date + timedelta(days=duration)

    @property
    def duration(self) -> int:
        return (self.end_date - self.start_date).days

    @duration.setter
    def duration(self, duration: int) -> None:
        self.end_date = self.start_date + timedelta(days=duration)

    @property
    def days_remaining(self) -> int:
        return (self.end_date - utcnow()).days

    @property
    def late(self) -> bool:
        return self.end_date < utcnow()

    def get_all_fields(self) -> Dict[str, Any]:
        return {
            "_id": self.id,
            **self._values,
            "duration": self.duration,
            "daysRemaining": self.days_remaining,
            "late": self.late,
        }
