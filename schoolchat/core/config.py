import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()


def _csv(value: str) -> List[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


class Settings(BaseModel):
    database_url: str = "postgresql://postgres:postgres@db:5432/school_chat"
    echo_sql: bool = False

    jwt_secret: str = "dev-key"
    jwt_algorithm: str = "HS256"
    access_token_expire_days: int = 7
    cookie_name: str = "token"
    environment: str = "development"

    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    default_model: str = "gpt-4o-mini"
    allowed_models: List[str] = ["gpt-4o-mini", "gpt-4o", "gpt-4.1-mini"]

    school_name: str = "AI School Assistant"
    theme: str = "dark"
    retention_months: int = 12

    superadmin_username: str = "admin"
    superadmin_password: str = "admin123"
    seed_superadmin: bool = True

    sentry_dsn: Optional[str] = None
    release: Optional[str] = None
    otlp_endpoint: Optional[str] = None
    log_level: str = "INFO"
    cors_origins: List[str] = []

    @property
    def cookie_secure(self) -> bool:
        return self.environment == "production"

    @classmethod
    def from_env(cls) -> "Settings":
        env = os.getenv
        return cls(
            database_url=env("DATABASE_URL", cls.model_fields["database_url"].default),
            echo_sql=env("SQL_ECHO", "false").lower() == "true",
            jwt_secret=env("JWT_SECRET", "dev-key"),
            jwt_algorithm=env("JWT_ALGORITHM", "HS256"),
            access_token_expire_days=int(env("ACCESS_TOKEN_EXPIRE_DAYS", 7)),
            cookie_name=env("COOKIE_NAME", "token"),
            environment=env("ENVIRONMENT", "development"),
            openai_api_key=env("OPENAI_API_KEY"),
            openai_base_url=env("OPENAI_BASE_URL"),
            default_model=env("DEFAULT_MODEL", "gpt-4o-mini"),
            allowed_models=_csv(env("ALLOWED_MODELS", "gpt-4o-mini,gpt-4o,gpt-4.1-mini")),
            school_name=env("SCHOOL_NAME", "AI School Assistant"),
            theme=env("THEME", "dark"),
            retention_months=int(env("DATA_RETENTION_MONTHS", 12)),
            superadmin_username=env("SUPERADMIN_USERNAME", "admin"),
            superadmin_password=env("SUPERADMIN_PASSWORD", "admin123"),
            seed_superadmin=env("SEED_SUPERADMIN", "true").lower() == "true",
            sentry_dsn=env("SENTRY_DSN"),
            release=env("RELEASE"),
            otlp_endpoint=env("OTEL_EXPORTER_OTLP_ENDPOINT"),
            log_level=env("LOG_LEVEL", "INFO"),
            cors_origins=_csv(env("CORS_ORIGINS", "")),
        )
