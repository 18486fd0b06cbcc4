import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class DatabaseSettings:
    server_url: str
    server_port: int
    database_name: str


@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("PORT", "3000"))

    # Database settings
    mongo_url: str = os.getenv("MONGO_URL", "localhost")
    mongo_port: int = int(os.getenv("MONGO_PORT", "27017"))
    mongo_database: str = os.getenv("MONGO_DATABASE", "simplelib")
    initialize_database: bool = _env_flag("INITIALIZE_DATABASE", "true")

    # Query settings
    text_search_language: str = os.getenv("TEXT_SEARCH_LANGUAGE", "portuguese")
    default_page_size: int = int(os.getenv("DEFAULT_PAGE_SIZE", "10"))

    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()

    @property
    def database(self) -> DatabaseSettings:
        return DatabaseSettings(
            server_url=self.mongo_url,
            server_port=self.mongo_port,
            database_name=self.mongo_database,
        )


settings = Settings()
