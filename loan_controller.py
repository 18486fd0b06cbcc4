import logging
from datetime import timedelta
from typing import Optional

from fastapi import Query, Response
from pymongo import MongoClient

from config import DatabaseSettings
from controller import DEFAULT_ITEMS_PER_PAGE, Controller, serialize
from database import BOOKS_COLLECTION, LOANS_COLLECTION, DatabaseDriver
from errors import ApiError
from models import Book, Loan, ModelError, utcnow
from schemas import LoanCreate, LoanFilterParam, LoanSort, LoanUpdate

logger = logging.getLogger(__name__)


class LoanController(Controller):
    """Loans plus the book inventory they hold.

    Creating, moving and deleting a loan adjusts the copies of the books
    involved. Each step is its own write; a failure midway leaves the earlier
    steps applied.
    """

    module_name = "LoanController"

    def __init__(
        self,
        database_settings: DatabaseSettings,
        mongo_client: Optional[MongoClient] = None,
        items_per_page: int = DEFAULT_ITEMS_PER_PAGE,
    ):
        self._loans: Optional[DatabaseDriver] = None
        self._books: Optional[DatabaseDriver] = None
        super().__init__(database_settings, mongo_client, items_per_page)

    def get_loan_by_id(self, loan_id: str):
        loan = Loan.get_loan_by_id(self._loans, self._validate_id(loan_id, "loan"))
        return serialize(loan.get_all_fields())

    def list_loans(
        self,
        page: Optional[int] = None,
        ipp: Optional[int] = None,
        sort: Optional[str] = None,
        filter_: Optional[str] = Query(None, alias="filter"),
    ):
        skip, limit = self._pagination(page, ipp)
        sort_by = self._parse_json_param(LoanSort, sort, "sort")
        loan_filter = self._parse_json_param(LoanFilterParam, filter_, "filter")
        mongo_filter = loan_filter.to_query(utcnow()) if loan_filter else {}
        loans = Loan.query_loans(self._loans, mongo_filter, skip, limit, sort_by)
        return serialize([loan.get_all_fields() for loan in loans])

    def list_field_values(self, field_name: str):
        if not Loan.is_valid_field_name(field_name):
            raise ApiError(
                f'The provided field name is invalid! The string "{field_name}" is not a valid Loan field!',
                400,
                self.module_name,
            )
        return serialize(Loan.get_distinct_field_values(self._loans, field_name))

    def _get_lendable_book(self, raw_book_id: str) -> Book:
        book = Book.get_book_by_id(self._books, Book.get_id_from_string(raw_book_id))
        if book.copies <= 0:
            raise ApiError(
                f'The requested book has no available units. BookId = "{raw_book_id}"',
                403,
                self.module_name,
            )
        return book

    def create_loan(self, payload: LoanCreate):
        book = self._get_lendable_book(payload.book_id)
        book.copies -= 1
        book.commit_changes()
        logger.info(f"Book {book.id} lent out, {book.copies} copies left")
        new_loan = Loan.create_loan(
            self._loans,
            {
                "reader": payload.reader,
                "phone": payload.phone,
                "bookId": book.id,
                "bookTitle": book.title,
                "startDate": payload.start_date,
                "endDate": payload.start_date + timedelta(days=payload.duration),
                "renew": payload.renew,
            },
        )
        logger.info(f"Created loan {new_loan.id} of book {book.id} for {payload.reader}")
        return {"createdId": str(new_loan.id)}

    def update_loan(self, loan_id: str, payload: LoanUpdate):
        id_ = self._validate_id(loan_id, "loan")
        loan = Loan.get_loan_by_id(self._loans, id_)
        if payload.reader is not None:
            loan.reader = payload.reader
        if payload.phone is not None:
            loan.phone = payload.phone
        if payload.book_id is not None and Book.get_id_from_string(payload.book_id) != loan.book_id:
            new_book = self._get_lendable_book(payload.book_id)
            current_book = Book.get_book_by_id(self._books, loan.book_id)
            current_book.copies += 1
            new_book.copies -= 1
            current_book.commit_changes()
            new_book.commit_changes()
            logger.info(f"Loan {id_} moved from book {current_book.id} to {new_book.id}")
            loan.book_id = new_book.id
            loan.book_title = new_book.title
        # A new start keeps the old duration unless one is given too
        if payload.start_date is not None:
            loan.start_date = payload.start_date
        if payload.duration is not None:
            loan.duration = payload.duration
        if payload.renew is not None:
            loan.renew = payload.renew
        try:
            loan.commit_changes()
        except ApiError as exc:
            raise ApiError(
                f'An error was encountered while updating the loan with id="{id_}". Error: {exc.message}',
                500,
                self.module_name,
            ) from exc
        logger.info(f"Updated loan {id_}")
        return Response(status_code=200)

    def delete_loan(self, loan_id: str):
        id_ = self._validate_id(loan_id, "loan")
        loan = Loan.get_loan_by_id(self._loans, id_)
        try:
            book: Optional[Book] = Book.get_book_by_id(self._books, loan.book_id)
        except ModelError as exc:
            if exc.status_code != 404:
                raise
            logger.warning(f"Loan {id_} references missing book {loan.book_id}, no copies returned")
            book = None
        if book is not None:
            book.copies += 1
        Loan.delete_loan_by_id(self._loans, id_)
        if book is not None:
            book.commit_changes()
            logger.info(f"Book {book.id} returned, {book.copies} copies available")
        logger.info(f"Deleted loan {id_}")
        return Response(status_code=200)

    def _initialize_models(self) -> None:
        self._loans = self._open_driver(LOANS_COLLECTION)
        self._books = self._open_driver(BOOKS_COLLECTION)

    def _initialize_routes(self) -> None:
        self._register_route("GET", "/fields/{field_name}", self.list_field_values)
        self._register_route("GET", "/{loan_id}", self.get_loan_by_id)
        self._register_route("GET", "", self.list_loans)
        self._register_route("POST", "", self.create_loan, status_code=201)
        self._register_route("PATCH", "/{loan_id}", self.update_loan)
        self._register_route("DELETE", "/{loan_id}", self.delete_loan)
