import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings
from database import BOOKS_COLLECTION, LOANS_COLLECTION, DatabaseDriver
from main import create_app

SAMPLE_BOOK = {
    "isbn": "123",
    "title": "T",
    "author": "A",
    "categories": ["Fiction"],
    "publisher": "P",
    "edition": "1",
    "format": "paper",
    "date": "2020",
    "pages": 100,
    "copies": 2,
    "description": "d",
    "location": "L",
}

PHONE = "(11) 91234-5678"


@pytest.fixture
def app_settings():
    return Settings(
        mongo_url="localhost",
        mongo_port=27017,
        mongo_database="simplelib_test",
        initialize_database=False,
        default_page_size=10,
    )


@pytest.fixture
def mongo_client():
    return mongomock.MongoClient()


@pytest.fixture
def app(app_settings, mongo_client):
    return create_app(app_settings, mongo_client)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


def _open_driver(mongo_client, app_settings, collection_name):
    database = app_settings.database
    driver = DatabaseDriver(database.server_url, database.server_port, database.database_name, client=mongo_client)
    driver.connect()
    driver.active_collection = collection_name
    return driver


@pytest.fixture
def books_driver(mongo_client, app_settings):
    return _open_driver(mongo_client, app_settings, BOOKS_COLLECTION)


@pytest.fixture
def loans_driver(mongo_client, app_settings):
    return _open_driver(mongo_client, app_settings, LOANS_COLLECTION)


@pytest.fixture
def book_data():
    return {**SAMPLE_BOOK, "categories": list(SAMPLE_BOOK["categories"])}


@pytest.fixture
def create_book(client):
    def _create(**overrides):
        payload = {**SAMPLE_BOOK, "categories": list(SAMPLE_BOOK["categories"]), **overrides}
        response = client.post("/books", json=payload)
        assert response.status_code == 200, response.json()
        return response.json()["createdId"]
    return _create


@pytest.fixture
def create_loan(client):
    def _create(book_id, **overrides):
        payload = {
            "reader": "Ana",
            "phone": PHONE,
            "bookId": book_id,
            "startDate": "2024-03-01T00:00:00",
            "duration": 14,
            **overrides,
        }
        response = client.post("/loans", json=payload)
        assert response.status_code == 201, response.json()
        return response.json()["createdId"]
    return _create
