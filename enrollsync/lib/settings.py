"""Settings and request models for enrollment syncs.

SyncSettings loads from environment variables with the ENROLLSYNC_ prefix
(or the unprefixed names API_BASE, USER_TOKEN and SPREADSHEET_ID), from a
``.env`` file, and optionally from a YAML overlay file.

Example:
    >>> # ENROLLSYNC_API_BASE=https://api.example.com
    >>> # ENROLLSYNC_USER_TOKEN=secret
    >>> settings = load_settings("enrollsync.yaml")
    >>> settings.page_size
    500
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from enrollsync.lib.env import expand_options
from enrollsync.lib.errors import ConfigurationError

logger = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_ORGANIZATIONS",
    "SyncRequest",
    "SyncSettings",
    "load_settings",
]

DEFAULT_ORGANIZATIONS: Dict[int, str] = {
    20: "EAD",
    17: "PÓS EAD",
    9: "PÓS Presencial",
    0: "Presencial",
    4: "Policlínica Uniguairacá",
    15: "Colégio Uniguairacá",
    18: "Clínica Integrada",
}


class SyncSettings(BaseSettings):
    """Everything a sync run needs to know about its environment."""

    api_base: str = Field(
        default="",
        validation_alias=AliasChoices("ENROLLSYNC_API_BASE", "API_BASE", "api_base"),
        description="Upstream API base URL",
    )
    user_token: str = Field(
        default="",
        validation_alias=AliasChoices("ENROLLSYNC_USER_TOKEN", "USER_TOKEN", "user_token"),
        description="Static credential exchanged for bearer tokens",
    )
    auth_endpoint: str = Field(default="/auth/token")
    enrollments_endpoint: str = Field(default="/academico/matriculas")
    notices_endpoint: str = Field(default="/processos-seletivos/editais")
    notice_statuses: List[str] = Field(default_factory=list, description="statusEdital values tried by the period lookup")

    page_size: int = Field(default=500, ge=1, le=10000)
    max_pages_per_batch: int = Field(default=50, ge=1)
    max_parallel_requests: int = Field(default=10, ge=1, le=100)
    max_retries: int = Field(default=3, ge=0, le=10, description="Retries after the first attempt")
    retry_delay: float = Field(default=2.0, ge=0.0, le=60.0, description="Base backoff delay in seconds")
    auth_token_validity: float = Field(default=900.0, gt=0, description="Token validity in seconds")
    request_timeout: float = Field(default=60.0, gt=0)
    run_timeout: float = Field(default=600.0, gt=0, description="Deadline of one sync run in seconds")
    requests_per_second: Optional[float] = Field(default=None, gt=0)

    spreadsheet_id: str = Field(
        default="",
        validation_alias=AliasChoices("ENROLLSYNC_SPREADSHEET_ID", "SPREADSHEET_ID", "spreadsheet_id"),
    )
    sheets_access_token: str = Field(default="", description="Static OAuth access token for the Sheets API")
    credentials_json_base64: str = Field(
        default="",
        validation_alias=AliasChoices(
            "ENROLLSYNC_CREDENTIALS_JSON_BASE64", "GOOGLE_CREDENTIALS_JSON_BASE64", "credentials_json_base64"
        ),
        description="Base64-encoded service-account JSON",
    )
    credentials_file_path: str = Field(
        default="",
        validation_alias=AliasChoices(
            "ENROLLSYNC_CREDENTIALS_FILE_PATH", "CREDENTIALS_FILE_PATH", "credentials_file_path"
        ),
        description="Path to a service-account JSON file",
    )
    sheets_base_url: str = Field(default="https://sheets.googleapis.com/v4/spreadsheets")

    organizations: Dict[int, str] = Field(default_factory=lambda: dict(DEFAULT_ORGANIZATIONS))
    default_org_sheet: str = Field(default="Outras Matrículas")
    sheet_name_template: str = Field(default="Matrículas {org} STATUS: {status} | Período ID {period_id}")

    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console", description="Log format: 'json' or 'console'")
    log_file: Optional[str] = Field(default=None)

    model_config = SettingsConfigDict(
        env_prefix="ENROLLSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("api_base")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of: {sorted(valid_levels)}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        if v.lower() not in {"json", "console"}:
            raise ValueError("log_format must be 'json' or 'console'")
        return v.lower()

    def validate_for_sync(self, sink: str = "sheets") -> List[str]:
        """Return the problems that would stop a sync from running.

        An empty list means the settings are usable.
        """
        issues: List[str] = []
        if not self.api_base:
            issues.append("api_base is required (set ENROLLSYNC_API_BASE or API_BASE)")
        elif not self.api_base.startswith(("http://", "https://")):
            issues.append(f"api_base must be an http(s) URL, got '{self.api_base}'")
        if not self.user_token:
            issues.append("user_token is required (set ENROLLSYNC_USER_TOKEN or USER_TOKEN)")
        if sink == "sheets" and not self.spreadsheet_id:
            issues.append("spreadsheet_id is required for the sheets sink")
        if "{period_id}" not in self.sheet_name_template:
            issues.append("sheet_name_template must contain '{period_id}'")
        return issues

    def organization_name(self, org_id: Optional[int]) -> str:
        if org_id is None:
            return self.default_org_sheet
        return self.organizations.get(org_id, self.default_org_sheet)


class SyncRequest(BaseModel):
    """Parameters of one sync run."""

    period_id: int = Field(..., gt=0, description="Academic period (idPeriodoLetivo)")
    status: str = Field(default="", description="Enrollment status filter (statusMatricula)")
    org_id: Optional[int] = Field(default=None, ge=0)

    def filters(self) -> Dict[str, str]:
        """Query filters sent with every page request."""
        result = {"idPeriodoLetivo": str(self.period_id)}
        if self.status:
            result["statusMatricula"] = self.status
        return result


def load_settings(
    path: Optional[Union[str, Path]] = None,
    **overrides: Any,
) -> SyncSettings:
    """Build settings from the environment plus an optional YAML overlay.

    Values from the YAML file take precedence over environment variables;
    keyword overrides take precedence over both. ``${VAR}`` references in
    YAML string values are expanded.

    Raises:
        ConfigurationError: If the file is unreadable or values are invalid
    """
    values: Dict[str, Any] = {}
    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigurationError(f"Settings file not found: {config_path}")
        with config_path.open(encoding="utf-8") as f:
            try:
                loaded = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
        if not isinstance(loaded, dict):
            raise ConfigurationError(f"Settings file {config_path} must contain a mapping")
        values.update(expand_options(loaded))
        logger.debug("Loaded %d settings from %s", len(loaded), config_path)

    values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return SyncSettings(**values)
    except ValidationError as e:
        issues = [
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
            for err in e.errors()
        ]
        raise ConfigurationError("Invalid settings", issues=issues) from e
