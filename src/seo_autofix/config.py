import logging
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    llm_model: str = Field(default="gpt-4o-mini", alias="AUTOFIX_LLM_MODEL")
    gateway_timeout_seconds: float = Field(default=30.0, alias="AUTOFIX_GATEWAY_TIMEOUT")
    database_path: str = Field(default="data/autofix.db", alias="AUTOFIX_DATABASE_PATH")
    profile_path: Optional[str] = Field(default=None, alias="AUTOFIX_PROFILE_PATH")

    # Quality gate
    pm_quality_threshold: int = Field(default=80, ge=0, le=100, alias="AUTOFIX_QUALITY_THRESHOLD")
    review_fail_mode: Literal["open", "closed"] = Field(default="open", alias="AUTOFIX_REVIEW_FAIL_MODE")
    consistency_sample_size: int = Field(default=10, ge=1, alias="AUTOFIX_CONSISTENCY_SAMPLE_SIZE")

    # Generation
    target_word_count: int = Field(default=800, ge=1, alias="AUTOFIX_TARGET_WORD_COUNT")
    rate_limit_seconds: float = Field(default=0.0, ge=0, alias="AUTOFIX_RATE_LIMIT_SECONDS")

    # Application
    max_fixes_per_run: int = Field(default=50, ge=1, alias="AUTOFIX_MAX_FIXES_PER_RUN")
    lock_timeout_seconds: float = Field(default=10.0, gt=0, alias="AUTOFIX_LOCK_TIMEOUT")
    acting_principal: str = Field(default="autofix", alias="AUTOFIX_PRINCIPAL")

    slack_webhook_url: Optional[str] = Field(default=None, alias="SLACK_WEBHOOK_URL")
    log_level: str = Field(default="INFO", alias="AUTOFIX_LOG_LEVEL")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        populate_by_name = True
        extra = "ignore"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging for hosts embedding the pipeline."""
    logging.basicConfig(
        level=(level or get_settings().log_level).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
