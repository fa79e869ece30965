"""Configuration management for the archive extraction pipeline."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env early so BaseSettings can pick values up seamlessly.
load_dotenv()

COPY_DIR_NAME = "ExtAttachmentCopies"


class Settings(BaseSettings):
    """App configuration derived from environment variables."""

    archive_root: Path = Field(..., alias="ARCHIVE_ROOT")
    archive_extension: str = Field("ichat", alias="ARCHIVE_EXTENSION")
    attachments_root: Path | None = Field(None, alias="ATTACHMENTS_ROOT")
    external_attachment_library: Path | None = Field(
        None, alias="EXTERNAL_ATTACHMENT_LIBRARY"
    )
    copy_target_dir_override: Path | None = Field(None, alias="COPY_TARGET_DIR")
    copy_ledger_db: Path | None = Field(None, alias="COPY_LEDGER_DB")
    handle_names_file: Path | None = Field(None, alias="HANDLE_NAMES_FILE")

    self_match_policy: Literal["exact", "prefix"] = Field("exact", alias="SELF_MATCH_POLICY")
    thread_identity_policy: Literal["relay_subject", "sender"] = Field(
        "relay_subject", alias="THREAD_IDENTITY_POLICY"
    )
    relay_identity_prefix: str = Field("e:", alias="RELAY_IDENTITY_PREFIX")
    archive_timezone: str = Field("UTC", alias="ARCHIVE_TIMEZONE")

    start_year: int | None = Field(None, alias="START_YEAR")
    end_year: int | None = Field(None, alias="END_YEAR")

    output_dir: Path = Field(Path("out"), alias="OUTPUT_DIR")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator(
        "attachments_root",
        "external_attachment_library",
        "copy_target_dir_override",
        "copy_ledger_db",
        "handle_names_file",
        "start_year",
        "end_year",
        mode="before",
    )
    @classmethod
    def _empty_str_to_none(cls, value):
        if isinstance(value, str) and value.strip() == "":
            return None
        return value

    @field_validator(
        "archive_root",
        "attachments_root",
        "external_attachment_library",
        "copy_target_dir_override",
        "copy_ledger_db",
        "handle_names_file",
        "output_dir",
    )
    @classmethod
    def _expand_user(cls, value):
        if isinstance(value, Path):
            return value.expanduser()
        return value

    @field_validator("archive_extension", mode="before")
    @classmethod
    def _normalize_extension(cls, value):
        if isinstance(value, str):
            stripped = value.strip().lstrip(".")
            if not stripped:
                raise ValueError("ARCHIVE_EXTENSION must not be empty.")
            return stripped
        return value

    @field_validator("archive_timezone")
    @classmethod
    def _validate_timezone(cls, value):
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"ARCHIVE_TIMEZONE {value!r} is not a known time zone.") from exc
        return value

    @model_validator(mode="after")
    def _validate_year_range(self):
        if self.start_year is not None and self.end_year is not None:
            if self.end_year < self.start_year:
                raise ValueError("END_YEAR must not be earlier than START_YEAR.")
        return self

    @model_validator(mode="after")
    def _validate_copy_target(self):
        if self.external_attachment_library is not None and self.copy_target_dir is None:
            raise ValueError(
                "EXTERNAL_ATTACHMENT_LIBRARY requires ATTACHMENTS_ROOT or COPY_TARGET_DIR."
            )
        return self

    @property
    def copy_target_dir(self) -> Path | None:
        """Where external attachments are copied; beside the attachments root by default."""
        if self.copy_target_dir_override:
            return self.copy_target_dir_override
        if self.attachments_root:
            return self.attachments_root.parent / COPY_DIR_NAME
        return None

    def load_handle_names(self) -> dict[str, str]:
        """Read the optional identity -> display name overrides."""
        if not self.handle_names_file or not self.handle_names_file.exists():
            return {}
        payload = json.loads(self.handle_names_file.read_text(encoding="utf-8"))
        if not isinstance(payload, dict):
            raise ValueError(f"{self.handle_names_file} must hold a JSON object.")
        return {str(key).lstrip("+"): str(value) for key, value in payload.items()}
