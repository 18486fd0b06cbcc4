import logging
from typing import Optional

from fastapi import Query, Response
from pymongo import MongoClient

from config import DatabaseSettings
from controller import DEFAULT_ITEMS_PER_PAGE, Controller, serialize
from database import BOOKS_COLLECTION, DatabaseDriver
from errors import ApiError
from models import Book
from schemas import BookCreate, BookFilterParam, BookSort, BookUpdate

logger = logging.getLogger(__name__)


class BookController(Controller):
    module_name = "BookController"

    def __init__(
        self,
        database_settings: DatabaseSettings,
        mongo_client: Optional[MongoClient] = None,
        items_per_page: int = DEFAULT_ITEMS_PER_PAGE,
        text_search_language: str = "portuguese",
    ):
        self._books: Optional[DatabaseDriver] = None
        self._text_search_language = text_search_language
        super().__init__(database_settings, mongo_client, items_per_page)

    def get_book_by_id(self, book_id: str):
        book = Book.get_book_by_id(self._books, self._validate_id(book_id, "book"))
        return serialize(book.get_all_fields())

    def get_book_by_isbn(self, isbn: str):
        book = Book.get_book_by_isbn(self._books, isbn)
        return serialize(book.get_all_fields())

    def list_books(self, page: Optional[int] = None, ipp: Optional[int] = None, sort: Optional[str] = None):
        skip, limit = self._pagination(page, ipp)
        sort_by = self._parse_json_param(BookSort, sort, "sort")
        books = Book.query_books(self._books, {}, skip, limit, sort_by)
        return serialize([book.get_all_fields() for book in books])

    def search_books(
        self,
        query: Optional[str] = None,
        page: Optional[int] = None,
        ipp: Optional[int] = None,
        filter_: Optional[str] = Query(None, alias="filter"),
        sort: Optional[str] = None,
    ):
        skip, limit = self._pagination(page, ipp)
        sort_by = self._parse_json_param(BookSort, sort, "sort")
        book_filter = self._parse_json_param(BookFilterParam, filter_, "filter")
        mongo_filter = book_filter.to_query() if book_filter else {}
        if not query:
            books = Book.query_books(self._books, mongo_filter, skip, limit, sort_by)
        else:
            books = Book.text_search(
                self._books,
                query,
                mongo_filter,
                skip,
                limit,
                sort_by,
                language=self._text_search_language,
            )
        return serialize([book.get_all_fields() for book in books])

    def list_field_values(self, field_name: str):
        if not Book.is_valid_field_name(field_name):
            raise ApiError(
                f'The provided field name is invalid! The string "{field_name}" is not a valid Book field!',
                400,
                self.module_name,
            )
        return serialize(Book.get_distinct_field_values(self._books, field_name))

    def create_book(self, payload: BookCreate):
        book = Book.create_book(self._books, payload.model_dump())
        logger.info(f"Created book {book.id} (isbn {book.isbn}, {book.copies} copies)")
        return {"createdId": str(book.id)}

    def update_book(self, book_id: str, payload: BookUpdate):
        id_ = self._validate_id(book_id, "book")
        book = Book.get_book_by_id(self._books, id_)
        update = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
        book.update_fields(update)
        try:
            book.commit_changes()
        except ApiError as exc:
            book.reload()
            raise ApiError(
                f'An error was encountered while updating the book with id="{id_}". '
                f"The in-memory copy was reloaded from the database. Error: {exc.message}",
                500,
                self.module_name,
            ) from exc
        logger.info(f"Updated book {id_}: {sorted(update)}")
        return Response(status_code=200)

    def delete_book(self, book_id: str):
        id_ = self._validate_id(book_id, "book")
        if not Book.delete_book_by_id(self._books, id_):
            raise ApiError(
                f'A book with id="{id_}" was not found on the database (nothing was deleted)',
                404,
                self.module_name,
            )
        logger.info(f"Deleted book {id_}")
        return Response(status_code=200)

    def _initialize_models(self) -> None:
        self._books = self._open_driver(BOOKS_COLLECTION)

    def _initialize_routes(self) -> None:
        self._register_route("GET", "/search", self.search_books)
        self._register_route("GET", "/fields/{field_name}", self.list_field_values)
        self._register_route("GET", "/isbn/{isbn}", self.get_book_by_isbn)
        self._register_route("GET", "/{book_id}", self.get_book_by_id)
        self._register_route("GET", "", self.list_books)
        self._register_route("POST", "", self.create_book)
        self._register_route("PATCH", "/{book_id}", self.update_book)
        self._register_route("DELETE", "/{book_id}", self.delete_book)
