import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pymongo import MongoClient

from book_controller import BookController
from config import Settings, settings as default_settings
from controller import Controller
from database import DatabaseDriver, initialize_database
from errors import ApiError, register_exception_handlers
from loan_controller import LoanController

logging.basicConfig(level=default_settings.log_level)
logger = logging.getLogger(__name__)


def bootstrap_database(app_settings: Settings, mongo_client: Optional[MongoClient] = None) -> None:
    database = app_settings.database
    driver = DatabaseDriver(database.server_url, database.server_port, database.database_name, client=mongo_client)
    try:
        driver.connect()
        initialize_database(driver)
        logger.info(f"Database {database.database_name} initialized")
    except ApiError as exc:
        logger.error(f"Database bootstrap failed: {exc.message}")
    finally:
        # A shared client stays open for the controllers
        if mongo_client is None:
            driver.disconnect()


def create_app(app_settings: Optional[Settings] = None, mongo_client: Optional[MongoClient] = None) -> FastAPI:
    app_settings = app_settings or default_settings
    controllers: Dict[str, Controller] = {
        "/books": BookController(
            app_settings.database,
            mongo_client,
            items_per_page=app_settings.default_page_size,
            text_search_language=app_settings.text_search_language,
        ),
        "/loans": LoanController(
            app_settings.database,
            mongo_client,
            items_per_page=app_settings.default_page_size,
        ),
    }

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app_settings.initialize_database:
            bootstrap_database(app_settings, mongo_client)
        for controller in controllers.values():
            controller.initialize_controller()
        try:
            yield
        finally:
            for controller in controllers.values():
                controller.shutdown()

    app = FastAPI(title="Library Catalog API", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization"],
    )

    for path, controller in controllers.items():
        app.include_router(controller.router, prefix=path)

    register_exception_handlers(app)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=default_settings.api_host, port=default_settings.api_port)
