from typing import List

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings

HMAC_ALGORITHMS = ("HS256", "HS384", "HS512")


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./data/docshare.db"
    SQL_LOG_MODE: str = "warn"
    LOG_LEVEL: str = "INFO"

    SECRET_KEY: str = Field(
        default="dev-secret",
        validation_alias=AliasChoices("SECRET_KEY", "SESSION_SECRET"),
    )
    ALGORITHM: str = "HS256"
    ACCEPTED_ALGORITHMS: List[str] = list(HMAC_ALGORITHMS)
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24

    # Empty means "derive from the incoming request".
    BASE_URL: str = ""
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost"]

    @field_validator("ALGORITHM")
    @classmethod
    def _signing_algorithm_is_hmac(cls, value: str) -> str:
        if value not in HMAC_ALGORITHMS:
            raise ValueError(f"ALGORITHM must be one of {HMAC_ALGORITHMS}")
        return value

    @field_validator("ACCEPTED_ALGORITHMS")
    @classmethod
    def _only_hmac_accepted(cls, value: List[str]) -> List[str]:
        accepted = [alg for alg in value if alg in HMAC_ALGORITHMS]
        return accepted or list(HMAC_ALGORITHMS)

    class Config:
        env_file = ".env"
        populate_by_name = True


settings = Settings()
