import logging
from typing import Any, Callable, List, Optional, Tuple

from bson import ObjectId
from fastapi import APIRouter, Depends
from fastapi.encoders import jsonable_encoder
from pydantic import TypeAdapter, ValidationError
from pymongo import MongoClient

from config import DatabaseSettings
from database import DatabaseDriver
from errors import ApiError
from models import Model

logger = logging.getLogger(__name__)

DEFAULT_ITEMS_PER_PAGE = 10


def serialize(data: Any) -> Any:
    return jsonable_encoder(data, custom_encoder={ObjectId: str})


class Controller:
    """Owns an APIRouter plus the database drivers its handlers use.

    Routes are registered on construction. Handlers answer 503 until
    initialize_controller() has connected the drivers.
    """

    module_name = "Controller"

    def __init__(
        self,
        database_settings: DatabaseSettings,
        mongo_client: Optional[MongoClient] = None,
        items_per_page: int = DEFAULT_ITEMS_PER_PAGE,
    ):
        self._database_settings = database_settings
        self._mongo_client = mongo_client
        self._items_per_page = items_per_page
        self._drivers: List[DatabaseDriver] = []
        self._is_ready = False
        self.router = APIRouter()
        self._initialize_routes()

    @property
    def is_ready(self) -> bool:
        return self._is_ready

    def initialize_controller(self) -> bool:
        try:
            self._initialize_models()
        except ApiError as exc:
            logger.error(f"{type(self).__name__} initialization failed with the following error: {exc.message}")
            return False
        self._is_ready = True
        logger.info(f"{type(self).__name__} ready")
        return True

    def shutdown(self) -> None:
        self._is_ready = False
        for driver in self._drivers:
            try:
                driver.disconnect()
            except ApiError as exc:
                logger.warning(f"Failed to disconnect {driver.connection_string}: {exc.message}")
        self._drivers = []

    def _open_driver(self, collection_name: str) -> DatabaseDriver:
        driver = DatabaseDriver(
            self._database_settings.server_url,
            self._database_settings.server_port,
            self._database_settings.database_name,
            client=self._mongo_client,
        )
        driver.connect()
        driver.active_collection = collection_name
        self._drivers.append(driver)
        return driver

    def _require_ready(self) -> None:
        if not self._is_ready:
            logger.warning(f"A handler of the non-initialized {type(self).__name__} was called")
            raise ApiError(
                "The resource on the requested URL is not ready to take requests: the controller was not initialized",
                503,
                "Controller",
            )

    def _register_route(self, method: str, path: str, handler: Callable, status_code: int = 200) -> None:
        self.router.add_api_route(
            path,
            handler,
            methods=[method],
            status_code=status_code,
            dependencies=[Depends(self._require_ready)],
        )

    # Request helpers
    def _validate_id(self, raw_id: str, entity: str) -> ObjectId:
        if not Model.is_valid_id(raw_id):
            raise ApiError(
                f'The provided {entity} id is invalid! The string "{raw_id}" is not a valid MongoDB ObjectId!',
                400,
                self.module_name,
            )
        return Model.get_id_from_string(raw_id)

    def _pagination(self, page: Optional[int], items_per_page: Optional[int]) -> Tuple[int, int]:
        """Turn page/ipp into (skip, limit); no page means every match."""
        if page is None:
            return 0, 0
        if page <= 0:
            raise ApiError(
                f"An invalid value was provided to the page parameter! The page must be a positive integer (got {page}).",
                400,
                self.module_name,
            )
        if items_per_page is None:
            items_per_page = self._items_per_page
        if items_per_page <= 0:
            raise ApiError(
                f"An invalid value was provided to the ipp parameter! The items per page must be a positive integer (got {items_per_page}).",
                400,
                self.module_name,
            )
        return (page - 1) * items_per_page, items_per_page

    def _parse_json_param(self, adapter: TypeAdapter, raw: Optional[str], name: str) -> Any:
        if raw is None:
            return None
        try:
            return adapter.validate_json(raw)
        except ValidationError as exc:
            raise ApiError(
                f'The {name} parameter, if provided, must be a JSON object in the expected format. '
                f'The provided value was "{raw}". The following inconsistencies were encountered: {exc}',
                400,
                self.module_name,
            ) from exc

    def _initialize_models(self) -> None:
        raise NotImplementedError

    def _initialize_routes(self) -> None:
        raise NotImplementedError
