from pydantic_settings import BaseSettings, NoDecode
from pydantic import validator
from typing import Annotated, List


class Settings(BaseSettings):
    # Application settings
    APP_NAME: str = "LTI Resource Link Services"
    DEBUG: bool = False

    # Outbound HTTP settings
    LTI_HTTP_TIMEOUT: int = 30
    LTI_USER_AGENT: str = "ltilink/1.0"
    LTI_MAX_PAGES: int = 100  # pages followed for one paged collection

    # Access token settings
    LTI_ACCESS_TOKEN_LIFETIME: int = 3600  # used when the platform omits expires_in
    LTI_CLIENT_ASSERTION_LIFETIME: int = 60
    LTI_AUTHORIZED_SCOPES: Annotated[List[str], NoDecode] = []  # comma-separated in the environment

    # Database settings
    DATABASE_URL: str = "sqlite+aiosqlite:///./ltilink.db"
    DATABASE_ECHO: bool = False

    # Diagnostics
    ERROR_LOG_MAX_ENTRIES: int = 1000

    @validator("LTI_AUTHORIZED_SCOPES", pre=True)
    def parse_scopes(cls, v):
        if isinstance(v, str):
            return [scope.strip() for scope in v.split(",") if scope.strip()]
        return v

    @validator("DATABASE_URL")
    def validate_database_url(cls, v):
        if not v:
            raise ValueError("DATABASE_URL is required")
        return v

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
