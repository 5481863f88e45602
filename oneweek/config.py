"""Settings and access configuration.

Two sources configure a oneweek deployment:

- ``Settings``: process-level options read from ``ONEWEEK_*`` environment
  variables (credentials path, access config path, display timezone, log
  level).
- ``AccessConfig``: the family's users, roles and calendars, loaded from a
  JSON file. Each calendar maps user IDs to a role; each role maps to the
  permissions it grants.
"""

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator

from oneweek.errors import ValidationError

logger = logging.getLogger(__name__)

Permission = Literal["read", "create", "update", "delete"]

ENV_PREFIX = "ONEWEEK_"


class Settings(BaseModel):
    """Process-level settings.

    Attributes:
        credentials_path: Service account JSON key used for Google APIs
        access_config_path: JSON file describing users, roles and calendars
        timezone: IANA zone defining day and week boundaries on the board
        log_level: Root log level applied by :func:`configure_logging`
    """

    credentials_path: Path = Path("credentials.json")
    access_config_path: Path = Path("config.json")
    timezone: str = "Europe/Stockholm"
    log_level: str = "INFO"

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {value!r}") from exc
        return value

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {value!r}")
        return level

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from ``ONEWEEK_*`` environment variables.

        Args:
            environ: Environment mapping (default: ``os.environ``)

        Raises:
            ValidationError: If a variable holds an invalid value
        """
        env = os.environ if environ is None else environ
        values = {
            name: env[ENV_PREFIX + name.upper()]
            for name in cls.model_fields
            if ENV_PREFIX + name.upper() in env
        }
        try:
            return cls(**values)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid settings: {exc}") from exc


class UserConfig(BaseModel):
    emails: list[str]


class CalendarConfig(BaseModel):
    """One calendar on the board.

    Attributes:
        id: Remote calendar ID
        name: Display name
        color: Display color
        permissions: User ID → role name
    """

    id: str
    name: str
    color: str = "#4285f4"
    permissions: dict[str, str] = Field(default_factory=dict)


class AccessConfig(BaseModel):
    """Users, roles and calendars of one board."""

    users: dict[str, UserConfig]
    roles: dict[str, list[Permission]]
    calendars: list[CalendarConfig]


def load_access_config(path: str | Path) -> AccessConfig:
    """Load and validate the access configuration file.

    Raises:
        ValidationError: If the file is missing, not JSON, or malformed
    """
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as exc:
        raise ValidationError(f"Cannot read access config {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Access config {path} is not valid JSON: {exc}") from exc

    try:
        config = AccessConfig.model_validate(raw)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid access config {path}: {exc}") from exc

    logger.info(
        "Access config loaded: %d users, %d calendars",
        len(config.users),
        len(config.calendars),
    )
    return config


def configure_logging(level: str = "INFO") -> None:
    """Install a basic stderr handler on the root logger."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


__all__ = [
    "Permission",
    "Settings",
    "UserConfig",
    "CalendarConfig",
    "AccessConfig",
    "load_access_config",
    "configure_logging",
]
