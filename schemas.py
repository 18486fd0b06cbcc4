"""
Request schemas for the library catalog API.

Each Pydantic model validates one request payload before it reaches a
MongoDB collection. JSON keys follow the stored documents (camelCase);
Python attributes use aliases where the two differ.

Collections:
- books
- loans
"""

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from models import BOOK_FIELDS, LOAN_FIELDS, Model

NonEmptyStr = Annotated[str, Field(min_length=1)]
NonNegativeInt = Annotated[int, Field(ge=0, strict=True)]
PositiveInt = Annotated[int, Field(gt=0, strict=True)]
SortDirection = Literal[1, -1]

PHONE_PATTERN = r"^\(\d{2,5}\)\s*9?\d{4}-?\d{4}$"
PhoneNumber = Annotated[str, Field(pattern=PHONE_PATTERN)]


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _unique(values: Optional[List[str]]) -> Optional[List[str]]:
    if values is None:
        return values
    return list(dict.fromkeys(values))


def _object_id_string(value: Optional[str]) -> Optional[str]:
    if value is not None and not Model.is_valid_id(value):
        raise ValueError(f'"{value}" is not a valid MongoDB ObjectId')
    return value


# Books
class BookCreate(BaseModel):
    """
    Full book payload
    Collection name: "books"
    """
    model_config = ConfigDict(extra="forbid")

    isbn: NonEmptyStr = Field(..., description="ISBN identifier, unique")
    title: NonEmptyStr = Field(..., description="Book title")
    author: NonEmptyStr = Field(..., description="Primary author")
    categories: List[str] = Field(..., description="Categories/genres, duplicates removed")
    publisher: str = Field(..., description="Publisher")
    edition: str = Field(..., description="Edition")
    format: str = Field(..., description="Physical format, e.g. paperback")
    date: str = Field(..., description="Publication date")
    pages: NonNegativeInt = Field(..., description="Page count")
    copies: NonNegativeInt = Field(..., description="Copies available for loan")
    description: str = Field(..., description="Short description")
    location: str = Field(..., description="Shelf location")

    @field_validator("categories")
    @classmethod
    def dedupe_categories(cls, value):
        return _unique(value)


class BookUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    isbn: Optional[NonEmptyStr] = None
    title: Optional[NonEmptyStr] = None
    author: Optional[NonEmptyStr] = None
    categories: Optional[List[str]] = None
    publisher: Optional[str] = None
    edition: Optional[str] = None
    format: Optional[str] = None
    date: Optional[str] = None
    pages: Optional[NonNegativeInt] = None
    copies: Optional[NonNegativeInt] = None
    description: Optional[str] = None
    location: Optional[str] = None

    @field_validator("categories")
    @classmethod
    def dedupe_categories(cls, value):
        return _unique(value)


class BookFilter(BaseModel):
    """Book search filter. ``categories`` matches any listed category, ``allCategories`` all of them."""
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    isbn: Optional[NonEmptyStr] = None
    title: Optional[NonEmptyStr] = None
    author: Optional[NonEmptyStr] = None
    publisher: Optional[NonEmptyStr] = None
    edition: Optional[NonEmptyStr] = None
    format: Optional[NonEmptyStr] = None
    date: Optional[NonEmptyStr] = None
    description: Optional[NonEmptyStr] = None
    location: Optional[NonEmptyStr] = None
    categories: Optional[List[str]] = None
    all_categories: Optional[List[str]] = Field(None, alias="allCategories")

    def to_query(self) -> Dict[str, Any]:
        query: Dict[str, Any] = self.model_dump(exclude_none=True, exclude={"categories", "all_categories"})
        categories: Dict[str, Any] = {}
        if self.categories:
            categories["$in"] = self.categories
        if self.all_categories:
            categories["$all"] = self.all_categories
        if categories:
            query["categories"] = categories
        return query


# Loans
class LoanCreate(BaseModel):
    """
    New loan payload
    Collection name: "loans"
    """
    model_config = ConfigDict(extra="forbid")

    reader: NonEmptyStr = Field(..., description="Reader's name")
    phone: PhoneNumber = Field(..., description="Phone number, e.g. (11) 91234-5678")
    book_id: str = Field(..., alias="bookId", description="Book ObjectId as string")
    start_date: datetime = Field(..., alias="startDate")
    duration: PositiveInt = Field(..., description="Loan length in days")
    renew: bool = False

    @field_validator("book_id")
    @classmethod
    def check_book_id(cls, value):
        return _object_id_string(value)

    @field_validator("start_date")
    @classmethod
    def naive_start_date(cls, value):
        return as_naive_utc(value)


class LoanUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reader: Optional[NonEmptyStr] = None
    phone: Optional[PhoneNumber] = None
    book_id: Optional[str] = Field(None, alias="bookId")
    start_date: Optional[datetime] = Field(None, alias="startDate")
    duration: Optional[PositiveInt] = None
    renew: Optional[bool] = None

    @field_validator("book_id")
    @classmethod
    def check_book_id(cls, value):
        return _object_id_string(value)

    @field_validator("start_date")
    @classmethod
    def naive_start_date(cls, value):
        return as_naive_utc(value)


class LoanFilter(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reader: Optional[NonEmptyStr] = None
    book_title: Optional[NonEmptyStr] = Field(None, alias="bookTitle")
    start_date: Optional[datetime] = Field(None, alias="startDate")
    end_date: Optional[datetime] = Field(None, alias="endDate")
    renew: Optional[bool] = None
    late: Optional[bool] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def naive_dates(cls, value):
        return as_naive_utc(value)

    def to_query(self, now: datetime) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if self.reader is not None:
            query["reader"] = self.reader
        if self.book_title is not None:
            query["bookTitle"] = self.book_title
        if self.start_date is not None:
            query["startDate"] = {"$gte": self.start_date}
        end_date: Dict[str, Any] = {}
        if self.end_date is not None:
            end_date["$lte"] = self.end_date
        if self.late is not None:
            end_date["$lt" if self.late else "$gte"] = now
        if end_date:
            query["endDate"] = end_date
        if self.renew is not None:
            query["renew"] = self.renew
        return query


# Query string parameters, sent as JSON
BookSort = TypeAdapter(Dict[Literal[BOOK_FIELDS], SortDirection])
LoanSort = TypeAdapter(Dict[Literal[LOAN_FIELDS], SortDirection])
BookFilterParam = TypeAdapter(BookFilter)
LoanFilterParam = TypeAdapter(LoanFilter)
