import json
import secrets
from decimal import Decimal
from typing import Annotated, Any, List, Optional, Union

from pydantic import AnyHttpUrl, Field, PostgresDsn, field_validator
from pydantic_settings import BaseSettings, NoDecode


class Settings(BaseSettings):
    API_V1_STR: str = "/api"
    SECRET_KEY: str = secrets.token_urlsafe(32)
    # 60 minutes * 24 hours * 8 days = 8 days
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 8
    SERVER_NAME: str = "Rigaby"
    APP_URL: str = "https://app.rigaby.com"
    # Comma-separated or JSON-formatted list of origins
    # e.g: '["http://localhost", "http://localhost:4200", "http://localhost:3000"]'
    CORS_ORIGINS: Annotated[List[AnyHttpUrl], NoDecode] = ["http://localhost:3000"]

    @field_validator("CORS_ORIGINS", mode="before")
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> List[str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",") if i.strip()]
        elif isinstance(v, str):
            return json.loads(v)
        elif isinstance(v, list):
            return v
        raise ValueError(v)

    PROJECT_NAME: str = "Rigaby"
    LOG_LEVEL: str = "INFO"
    PORT: int = 8000

    POSTGRES_SERVER: str = "localhost"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "password"
    POSTGRES_DB: str = "rigaby_db"
    SQLALCHEMY_DATABASE_URI: Optional[Union[PostgresDsn, str]] = Field(default=None, validate_default=True)
    # Create missing tables on startup (local development only)
    AUTO_CREATE_TABLES: bool = False

    @field_validator("SQLALCHEMY_DATABASE_URI", mode="before")
    def assemble_db_connection(cls, v: Optional[str], info) -> Any:
        if isinstance(v, str):
            return v
        values = info.data
        return PostgresDsn.build(
            scheme="postgresql+asyncpg",
            username=values.get("POSTGRES_USER"),
            password=values.get("POSTGRES_PASSWORD"),
            host=values.get("POSTGRES_SERVER"),
            path=values.get("POSTGRES_DB") or "",
        )

    # Wallet settings
    MIN_WITHDRAWAL_AMOUNT: Decimal = Decimal("1.00")

    # Referral settings
    REFERRAL_DIRECT_RATE: Decimal = Decimal("0.25")  # paid to the direct referrer
    # Rates for levels 1..N above the direct referrer; N is the propagation depth
    # Comma-separated ("0.03,0.02") or JSON ("[0.03, 0.02]") in the environment
    REFERRAL_LEVEL_RATES: Annotated[List[Decimal], NoDecode] = [
        Decimal("0.03"),
        Decimal("0.02"),
        Decimal("0.01"),
        Decimal("0.01"),
        Decimal("0.01"),
    ]

    @field_validator("REFERRAL_LEVEL_RATES", mode="before")
    def assemble_level_rates(cls, v: Union[str, List[Any]]) -> List[Any]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",") if i.strip()]
        elif isinstance(v, str):
            return json.loads(v, parse_float=Decimal)
        return v

    # Tracing settings
    OTEL_SERVICE_NAME: str = "rigaby-backend"
    OTLP_ENDPOINT: Optional[str] = None
    OTLP_INSECURE: bool = True

    model_config = {
        "case_sensitive": True,
        "env_file": ".env"
    }


settings = Settings()
