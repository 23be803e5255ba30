import os
from decimal import Decimal
from typing import List

from dotenv import load_dotenv
from pydantic_settings import BaseSettings

from .url_parser import parser

load_dotenv()


class Settings(BaseSettings):
    PROJECT_NAME: str = "REAL ESTATE CRM"
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./crm.db")
    SQL_ECHO: bool = False
    AUTO_CREATE_TABLES: bool = False

    SECRET_KEY: str = os.getenv("SECRET_KEY", "change-me")
    ALGORITHM: str = os.getenv("ALGORITHM", "HS256")

    RATE_LIMIT_ENABLED: bool = False
    RATE_LIMIT_REDIS_URL: str = (
        f"redis://{os.getenv('RATE_LIMIT_REDIS_HOST', 'localhost')}"
        f":{os.getenv('RATE_LIMIT_REDIS_PORT', '6379')}/0"
    )
    RATE_LIMIT_TIMES: int = 20
    RATE_LIMIT_SECONDS: int = 10

    DEFAULT_COMMISSION_RATE: Decimal = Decimal("2")
    MESSAGE_PAGE_SIZE: int = 50
    MAX_PAGE_SIZE: int = 100

    ALLOWED_HOSTS_RAW: str = os.getenv("ALLOWED_HOSTS", "http://localhost:3000")

    @property
    def ALLOWED_HOSTS(self) -> List[str]:
        return parser.parse_url_list(self.ALLOWED_HOSTS_RAW, "ALLOWED_HOSTS")

    class Config:
        env_file = ".env"
        extra = "ignore"
        case_sensitive = False


settings = Settings()
