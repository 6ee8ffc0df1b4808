"""Configuration settings using pydantic-settings."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings


_REPO_ROOT = Path(__file__).resolve().parents[1]


def _resolve_repo_path(path: Path) -> Path:
    if path.is_absolute():
        return path
    return (_REPO_ROOT / path).resolve()


class ReviewSettings(BaseSettings):
    """Settings for the review wizard and the validation rules."""

    # Extracted values below this confidence are flagged for review, never blocked.
    confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    # Last link of the preparer fallback chain (explicit -> profile -> static).
    default_preparer: str = "Consultant Pharmacist"
    autosave_interval_s: float = Field(default=30.0, gt=0)

    model_config = {"env_prefix": "HMR_REVIEW_", "extra": "ignore"}


class RenderSettings(BaseSettings):
    """Settings for document generation."""

    page_format: str = "A4"
    include_appendices: bool = False
    job_timeout_s: float = Field(default=30.0, gt=0)
    max_workers: int = Field(default=2, ge=1)
    job_retention_s: float = Field(default=900.0, ge=0)
    max_finished_jobs: int = Field(default=64, ge=0)
    font_size: float = 10.0
    report_template: Optional[Path] = None

    model_config = {"env_prefix": "HMR_RENDER_", "extra": "ignore"}

    @field_validator("page_format")
    @classmethod
    def _known_format(cls, value: str) -> str:
        if value.upper() not in {"A4", "LETTER"}:
            raise ValueError(f"unsupported page format: {value}")
        return value.upper() if value.upper() == "A4" else "Letter"

    @model_validator(mode="after")
    def _resolve_paths(self) -> "RenderSettings":
        if self.report_template is not None:
            self.report_template = _resolve_repo_path(self.report_template)
        return self


class StoreSettings(BaseSettings):
    """Draft persistence settings."""

    backend: str = "memory"
    database_url: str = Field(
        default="sqlite:///:memory:",
        validation_alias=AliasChoices("HMR_STORE_DATABASE_URL", "HMR_DATABASE_URL"),
    )
    echo_sql: bool = False

    model_config = {"env_prefix": "HMR_STORE_", "extra": "ignore"}

    @field_validator("backend")
    @classmethod
    def _known_backend(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in {"memory", "sql"}:
            raise ValueError(f"unsupported draft store backend: {value}")
        return value


class TemplateSettings(BaseSettings):
    """Custom template upload and mapping settings."""

    # Catalogue exposes medications[i] / recommendations[i] for i below this.
    max_list_items: int = Field(default=10, ge=1)
    max_upload_bytes: int = Field(default=10 * 1024 * 1024, ge=1)

    model_config = {"env_prefix": "HMR_TEMPLATE_", "extra": "ignore"}


__all__ = ["RenderSettings", "ReviewSettings", "StoreSettings", "TemplateSettings"]
