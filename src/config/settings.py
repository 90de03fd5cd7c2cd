# src/config/settings.py — v1
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for all deployment-specific settings: converter
endpoints, attachment retrieval, page layout, handle spooling and logging.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Primary (high-fidelity) converter ===
    converter_url: str = ""
    converter_token: str = ""
    converter_timeout_s: float = 60.0
    converter_unavailable_markers: str = "soffice,enoent,engine not found"

    # === Fallback (local) renderer ===
    fallback_docx_url: str = ""
    fallback_font_size: float = 10.0

    # === Attachments ===
    attachment_proxy_url: str = ""
    attachment_allowed_hosts: str = ""
    attachment_fetch_timeout_s: float = 30.0
    attachment_max_concurrency: int = 4
    approval_status_marker: str = "approve"

    # === Attachment page layout (points; default 8.5 x 13 in) ===
    page_width_pt: float = 612.0
    page_height_pt: float = 936.0
    page_margin_pt: float = 18.0
    page_allow_upscale: bool = False

    # === Handles ===
    spool_dir: Path | None = None

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator("attachment_max_concurrency")
    @classmethod
    def validate_concurrency(cls, v: int) -> int:  # noqa: N805
        if v < 1:
            raise ValueError("attachment_max_concurrency must be >= 1")
        return v

    @field_validator("page_margin_pt")
    @classmethod
    def validate_margin(cls, v: float) -> float:  # noqa: N805
        if v < 0:
            raise ValueError("page_margin_pt must be >= 0")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if self.page_margin_pt * 2 >= self.page_width_pt:
            errors.append("PAGE_MARGIN_PT leaves no printable width")
        if self.page_margin_pt * 2 >= self.page_height_pt:
            errors.append("PAGE_MARGIN_PT leaves no printable height")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    @property
    def converter_unavailable_markers_list(self) -> list[str]:
        """Parse comma-separated converter-unavailable markers (lowercased)."""
        return [
            m.strip().lower()
            for m in self.converter_unavailable_markers.split(",")
            if m.strip()
        ]

    @property
    def attachment_allowed_hosts_list(self) -> list[str]:
        """Parse comma-separated allowed attachment hosts."""
        return [
            h.strip().lower()
            for h in self.attachment_allowed_hosts.split(",")
            if h.strip()
        ]


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or per-run config).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
