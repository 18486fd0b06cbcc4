import json
from datetime import datetime, timezone

import pytest
from bson import ObjectId

from database import DatabaseError
from models import Book, Loan
from tests.conftest import PHONE


def copies_of(client, book_id):
    return client.get(f"/books/{book_id}").json()["copies"]


def test_create_loan_takes_a_copy(client, create_book, create_loan):
    book_id = create_book(copies=2)

    loan_id = create_loan(book_id)

    assert copies_of(client, book_id) == 1
    loan = client.get(f"/loans/{loan_id}").json()
    assert loan["_id"] == loan_id
    assert loan["bookId"] == book_id
    assert loan["bookTitle"] == "T"
    assert loan["startDate"] == "2024-03-01T00:00:00"
    assert loan["endDate"] == "2024-03-15T00:00:00"
    assert loan["duration"] == 14
    assert loan["renew"] is False
    assert loan["late"] is True


def test_loan_started_today_is_not_late(client, create_book, create_loan):
    book_id = create_book()
    loan_id = create_loan(book_id, startDate=datetime.now(timezone.utc).isoformat())

    loan = client.get(f"/loans/{loan_id}").json()
    assert loan["duration"] == 14
    assert loan["late"] is False
    assert loan["daysRemaining"] in (13, 14)


def test_create_loan_without_copies_is_forbidden(client, create_book):
    book_id = create_book(copies=0)

    response = client.post(
        "/loans",
        json={"reader": "Ana", "phone": PHONE, "bookId": book_id, "startDate": "2024-03-01T00:00:00", "duration": 14},
    )

    assert response.status_code == 403
    assert response.json()["module"] == "LoanController"
    assert client.get("/loans").json() == []
    assert copies_of(client, book_id) == 0


def test_create_loan_for_unknown_book(client):
    response = client.post(
        "/loans",
        json={"reader": "Ana", "phone": PHONE, "bookId": str(ObjectId()), "startDate": "2024-03-01T00:00:00", "duration": 14},
    )
    assert response.status_code == 404


@pytest.mark.parametrize(
    "overrides",
    [
        {"reader": ""},
        {"phone": "12345"},
        {"phone": "11 912345678"},
        {"bookId": "123"},
        {"duration": 0},
        {"duration": "14"},
        {"startDate": "someday"},
        {"renew": "maybe"},
        {"late": True},
    ],
)
def test_create_loan_rejects_invalid_payloads(client, create_book, overrides):
    book_id = create_book()
    payload = {"reader": "Ana", "phone": PHONE, "bookId": book_id, "startDate": "2024-03-01T00:00:00", "duration": 14}
    response = client.post("/loans", json={**payload, **overrides})
    assert response.status_code == 400
    assert copies_of(client, book_id) == 2


@pytest.mark.parametrize("phone", ["(11) 91234-5678", "(011)1234-5678", "(55) 12345678"])
def test_accepted_phone_formats(client, create_book, create_loan, phone):
    book_id = create_book()
    loan_id = create_loan(book_id, phone=phone)
    assert client.get(f"/loans/{loan_id}").json()["phone"] == phone


@pytest.mark.parametrize("method", ["get", "patch", "delete"])
def test_malformed_loan_id_is_bad_request(client, method):
    kwargs = {"json": {"reader": "X"}} if method == "patch" else {}
    response = getattr(client, method)("/loans/xyz", **kwargs)
    assert response.status_code == 400


def test_delete_loan_returns_the_copy(client, create_book, create_loan):
    book_id = create_book(copies=2)
    loan_id = create_loan(book_id)
    before = copies_of(client, book_id)

    assert client.delete(f"/loans/{loan_id}").status_code == 200

    assert copies_of(client, book_id) == before + 1
    assert client.get(f"/loans/{loan_id}").status_code == 404
    assert client.delete(f"/loans/{loan_id}").status_code == 404


def test_delete_loan_of_deleted_book(client, create_book, create_loan):
    book_id = create_book()
    loan_id = create_loan(book_id)
    client.delete(f"/books/{book_id}")

    assert client.delete(f"/loans/{loan_id}").status_code == 200
    assert client.get("/loans").json() == []


def test_update_loan_moves_inventory(client, create_book, create_loan):
    first = create_book(isbn="1", title="First", copies=2)
    second = create_book(isbn="2", title="Second", copies=1)
    loan_id = create_loan(first)

    response = client.patch(f"/loans/{loan_id}", json={"bookId": second})

    assert response.status_code == 200
    assert copies_of(client, first) == 2
    assert copies_of(client, second) == 0
    loan = client.get(f"/loans/{loan_id}").json()
    assert (loan["bookId"], loan["bookTitle"]) == (second, "Second")


def test_update_loan_to_unavailable_book(client, create_book, create_loan):
    first = create_book(isbn="1", copies=2)
    second = create_book(isbn="2", copies=0)
    loan_id = create_loan(first)

    response = client.patch(f"/loans/{loan_id}", json={"bookId": second, "reader": "Bia"})

    assert response.status_code == 403
    assert copies_of(client, first) == 1
    assert copies_of(client, second) == 0
    loan = client.get(f"/loans/{loan_id}").json()
    assert (loan["bookId"], loan["reader"]) == (first, "Ana")


def test_update_loan_with_same_book_keeps_inventory(client, create_book, create_loan):
    book_id = create_book(copies=2)
    loan_id = create_loan(book_id)

    assert client.patch(f"/loans/{loan_id}", json={"bookId": book_id}).status_code == 200
    assert copies_of(client, book_id) == 1


def test_update_duration_keeps_start_date(client, create_book, create_loan):
    loan_id = create_loan(create_book())

    client.patch(f"/loans/{loan_id}", json={"duration": 7})

    loan = client.get(f"/loans/{loan_id}").json()
    assert loan["startDate"] == "2024-03-01T00:00:00"
    assert loan["endDate"] == "2024-03-08T00:00:00"
    assert loan["duration"] == 7


def test_update_start_date_keeps_duration(client, create_book, create_loan):
    loan_id = create_loan(create_book())

    client.patch(f"/loans/{loan_id}", json={"startDate": "2024-04-01T00:00:00"})

    loan = client.get(f"/loans/{loan_id}").json()
    assert loan["endDate"] == "2024-04-15T00:00:00"
    assert loan["duration"] == 14


def test_update_start_date_and_duration_together(client, create_book, create_loan):
    loan_id = create_loan(create_book())

    client.patch(f"/loans/{loan_id}", json={"duration": 3, "startDate": "2024-05-01T00:00:00"})

    loan = client.get(f"/loans/{loan_id}").json()
    assert loan["startDate"] == "2024-05-01T00:00:00"
    assert loan["endDate"] == "2024-05-04T00:00:00"


def test_update_renew_flag_back_to_false(client, create_book, create_loan):
    loan_id = create_loan(create_book(), renew=True)

    client.patch(f"/loans/{loan_id}", json={"renew": False})

    assert client.get(f"/loans/{loan_id}").json()["renew"] is False


def test_update_loan_rejects_invalid_payloads(client, create_book, create_loan):
    loan_id = create_loan(create_book())
    assert client.patch(f"/loans/{loan_id}", json={"phone": "nope"}).status_code == 400
    assert client.patch(f"/loans/{loan_id}", json={"duration": -2}).status_code == 400
    assert client.patch(f"/loans/{loan_id}", json={"bookTitle": "X"}).status_code == 400
    assert client.patch(f"/loans/{ObjectId()}", json={"reader": "X"}).status_code == 404


def test_list_loans_filters_and_sorting(client, create_book, create_loan):
    book_id = create_book(copies=5)
    create_loan(book_id, reader="Ana")
    create_loan(book_id, reader="Bia", renew=True, startDate=datetime.now(timezone.utc).isoformat())

    def readers(**params):
        response = client.get("/loans", params=params)
        assert response.status_code == 200
        return [loan["reader"] for loan in response.json()]

    assert readers(filter=json.dumps({"late": True})) == ["Ana"]
    assert readers(filter=json.dumps({"late": False})) == ["Bia"]
    assert readers(filter=json.dumps({"renew": False})) == ["Ana"]
    assert readers(filter=json.dumps({"reader": "Bia"})) == ["Bia"]
    assert readers(filter=json.dumps({"bookTitle": "T"}), sort=json.dumps({"reader": -1})) == ["Bia", "Ana"]
    assert readers(filter=json.dumps({"startDate": "2025-01-01T00:00:00"})) == ["Bia"]
    assert readers(filter=json.dumps({"endDate": "2024-12-31T00:00:00"})) == ["Ana"]
    assert readers(page=2, ipp=1) == ["Bia"]


@pytest.mark.parametrize(
    "params",
    [
        {"filter": json.dumps({"status": "open"})},
        {"filter": json.dumps({"reader": ""})},
        {"filter": "{"},
        {"sort": json.dumps({"duration": 1})},
        {"page": 0},
    ],
)
def test_list_loans_rejects_bad_parameters(client, params):
    assert client.get("/loans", params=params).status_code == 400


def test_list_loan_field_values(client, create_book, create_loan):
    book_id = create_book()
    create_loan(book_id, reader="Ana")
    create_loan(book_id, reader="Bia")

    assert sorted(client.get("/loans/fields/reader").json()) == ["Ana", "Bia"]
    assert client.get("/loans/fields/duration").status_code == 400


# Known gaps: inventory changes are separate writes with no transaction

def test_failed_loan_insert_keeps_the_decrement(client, create_book, monkeypatch):
    book_id = create_book(copies=2)

    def broken_create(cls, driver, data):
        raise DatabaseError(driver.connection_string, "insert failed", "Model", driver.active_collection)

    monkeypatch.setattr(Loan, "create_loan", classmethod(broken_create))
    response = client.post(
        "/loans",
        json={"reader": "Ana", "phone": PHONE, "bookId": book_id, "startDate": "2024-03-01T00:00:00", "duration": 14},
    )

    assert response.status_code == 500
    assert client.get("/loans").json() == []
    assert copies_of(client, book_id) == 1


def test_interleaved_lends_lose_an_update(books_driver, book_data):
    book = Book.create_book(books_driver, {**book_data, "copies": 1})
    first = Book.get_book_by_id(books_driver, book.id)
    second = Book.get_book_by_id(books_driver, book.id)

    # Both pass the copies > 0 check before either writes
    assert first.copies > 0 and second.copies > 0
    first.copies -= 1
    second.copies -= 1
    first.commit_changes()
    second.commit_changes()

    assert Book.get_book_by_id(books_driver, book.id).copies == 0
