from decimal import Decimal
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(15, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # Identity provisioner (GoTrue-compatible admin API). Checked when first used, not at import.
    identity_service_url: Optional[str] = Field(None, alias="IDENTITY_SERVICE_URL")
    identity_service_key: Optional[str] = Field(None, alias="IDENTITY_SERVICE_KEY")
    identity_timeout_seconds: Optional[float] = Field(None, alias="IDENTITY_TIMEOUT_SECONDS")

    # Every provisioned account is born with this credential and must_change_password=true
    default_temporary_password: str = Field("ChangeMe123!", alias="DEFAULT_TEMPORARY_PASSWORD")

    student_batch_size: int = Field(500, alias="STUDENT_BATCH_SIZE")
    teacher_batch_size: int = Field(100, alias="TEACHER_BATCH_SIZE")
    guardian_batch_size: int = Field(100, alias="GUARDIAN_BATCH_SIZE")

    invoice_number_prefix: str = Field("INV", alias="INVOICE_NUMBER_PREFIX")
    currency_label: str = Field("MK", alias="CURRENCY_LABEL")
    money_quantum: Decimal = Decimal("0.01")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_file: Optional[str] = Field(None, alias="LOG_FILE")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
