"""Settings loading.

Values are merged from the user settings file, the project settings file and
finally ``APIDOCS_*`` environment variables; later sources win.
"""

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

STATE_DIR_NAME = ".apidocs"
SETTINGS_FILE = "settings.yaml"

# Keys as written in settings.yaml -> Settings field names
KEY_ALIASES = {
    "swaggerUrl": "swagger_url",
    "swaggerUserName": "swagger_username",
    "swaggerPassword": "swagger_password",
    "stateDir": "state_dir",
}

ENV_VARS = {
    "swagger_url": "APIDOCS_SWAGGER_URL",
    "swagger_username": "APIDOCS_SWAGGER_USERNAME",
    "swagger_password": "APIDOCS_SWAGGER_PASSWORD",
    "state_dir": "APIDOCS_STATE_DIR",
    "timeout": "APIDOCS_TIMEOUT",
}


class ConfigError(Exception):
    """Raised when a settings file or value is invalid."""


class Settings(BaseModel):
    swagger_url: str | None = None
    swagger_username: str | None = None
    swagger_password: str | None = None
    timeout: float = 30.0
    state_dir: Path

    @property
    def api_dir(self) -> Path:
        """Directory holding one generated Markdown file per tag."""
        return self.state_dir / "api"


def _read_settings_file(path: Path) -> dict:
    if not path.is_file():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot read settings file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Settings file {path} must contain a mapping")

    values = {KEY_ALIASES.get(key, key): value for key, value in data.items()}
    if values.get("state_dir"):
        values["state_dir"] = path.parent.parent / Path(values["state_dir"]).expanduser()
    logger.debug("Loaded settings from %s", path)
    return values


def load_settings(project_dir: Path, home_dir: Path | None = None) -> Settings:
    """Load merged settings for a project directory."""
    home_dir = home_dir or Path.home()
    merged: dict = {}
    for path in (
        home_dir / STATE_DIR_NAME / SETTINGS_FILE,
        project_dir / STATE_DIR_NAME / SETTINGS_FILE,
    ):
        merged.update(_read_settings_file(path))

    for field, var in ENV_VARS.items():
        value = os.getenv(var)
        if value:
            merged[field] = value

    if not merged.get("state_dir"):
        merged["state_dir"] = project_dir / STATE_DIR_NAME

    try:
        return Settings(**merged)
    except ValidationError as e:
        raise ConfigError(f"Invalid settings: {e}") from e
