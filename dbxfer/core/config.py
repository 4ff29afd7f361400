import os
import sys
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator

from dbxfer.core.models import AuthenticationType, ConnectionParams


_ENV_LOADED = False

DEFAULT_BATCH_SIZE = 1000
DEFAULT_PREVIEW_ROWS = 10


def _load_env_file(path: str, allow_override: bool = False) -> None:
    """
    Minimal .env loader: loads KEY=VALUE pairs into os.environ.
    - Ignores empty lines and lines starting with '#'
    - Supports values wrapped in single or double quotes
    - By default, does not override existing environment variables
    """
    if not path or not os.path.exists(path):
        return
    try:
        with open(path, "r", encoding="utf-8") as f:
            for raw_line in f:
                line = raw_line.strip()
                if not line or line.startswith("#"):
                    continue
                if line.startswith("export "):
                    line = line[len("export "):].strip()
                if "=" not in line:
                    continue
                key, value = line.split("=", 1)
                key = key.strip()
                value = value.strip()
                if (value.startswith('"') and value.endswith('"')) or (value.startswith("'") and value.endswith("'")):
                    value = value[1:-1]
                if allow_override or key not in os.environ:
                    os.environ[key] = value
    except PermissionError as e:
        print(f"FATAL: Permission denied reading environment file {path}: {e}", file=sys.stderr)
        raise


def load_env_if_present(force_reload: bool = False) -> None:
    """
    Load environment variables from .env files in order of precedence:
    1. .env.local (highest priority, not committed)
    2. .env.{ENVIRONMENT} (environment-specific)
    3. .env.common (common variables)
    4. .env (default)
    DBXFER_ENV_FILE, when set, replaces the default list.
    """
    global _ENV_LOADED
    if _ENV_LOADED and not force_reload:
        return

    custom = os.environ.get("DBXFER_ENV_FILE")
    if custom:
        _load_env_file(custom, allow_override=False)
    else:
        env_files = ['.env.local', '.env.common', '.env']
        environment = os.environ.get('ENVIRONMENT', '').strip()
        if environment:
            env_files.insert(1, f'.env.{environment}')

        for env_file in env_files:
            _load_env_file(env_file, allow_override=False)

    _ENV_LOADED = True


def _coerce_bool(v) -> bool:
    if isinstance(v, bool):
        return v
    if not isinstance(v, str):
        raise ValueError("Expected string for boolean field")
    val = v.strip().lower()
    if val in ("true", "1", "yes", "y", "on"):
        return True
    if val in ("false", "0", "no", "n", "off"):
        return False
    raise ValueError(f"Invalid boolean value: {v}")


class Settings(BaseModel):
    """
    Engine settings from environment variables.
    """
    model_config = ConfigDict(validate_assignment=True, populate_by_name=True)

    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, ge=1, alias="DBXFER_BATCH_SIZE")
    preview_rows: int = Field(default=DEFAULT_PREVIEW_ROWS, ge=1, alias="DBXFER_PREVIEW_ROWS")
    command_timeout: int = Field(default=300, ge=0, alias="DBXFER_COMMAND_TIMEOUT")
    progress_queue_size: int = Field(default=100, ge=1, alias="DBXFER_PROGRESS_QUEUE_SIZE")
    log_level: str = Field(default="INFO", alias="DBXFER_LOG_LEVEL")
    log_json: bool = Field(default=False, alias="DBXFER_LOG_JSON")

    @field_validator('log_json', mode='before')
    @classmethod
    def coerce_bool(cls, v):
        return _coerce_bool(v)

    @field_validator('batch_size', 'preview_rows', 'command_timeout', 'progress_queue_size', mode='before')
    @classmethod
    def coerce_int(cls, v):
        if isinstance(v, int):
            return v
        if isinstance(v, str):
            return int(v.strip())
        raise ValueError("Expected integer-compatible value")

    @field_validator('log_level', mode='before')
    @classmethod
    def normalize_level(cls, v):
        level = str(v or "INFO").strip().upper()
        if level not in ("DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {v}")
        return level


_settings: Optional[Settings] = None


def get_settings(reload: bool = False) -> Settings:
    """
    Get engine settings. Set reload=True to force reloading from current environment.
    """
    global _settings
    if _settings is None or reload:
        load_env_if_present(force_reload=reload)
        env = os.environ
        values = {
            key: env[key]
            for key in (
                "DBXFER_BATCH_SIZE",
                "DBXFER_PREVIEW_ROWS",
                "DBXFER_COMMAND_TIMEOUT",
                "DBXFER_PROGRESS_QUEUE_SIZE",
                "DBXFER_LOG_LEVEL",
                "DBXFER_LOG_JSON",
            )
            if env.get(key, "").strip()
        }
        _settings = Settings(**values)
    return _settings


def connection_params_from_env(prefix: str, **overrides) -> ConnectionParams:
    """
    Build ConnectionParams from <PREFIX>_* environment variables.

    Recognized suffixes: DIALECT, SERVER, PORT, AUTH (integrated|credentials),
    USER, PASSWORD, TIMEOUT, TRUST_CERT, DATABASE, ODBC_DRIVER.
    Keyword overrides that are not None win over the environment.
    """
    load_env_if_present()
    prefix = prefix.rstrip("_").upper()
    env = os.environ

    def _get(suffix: str) -> Optional[str]:
        value = env.get(f"{prefix}_{suffix}")
        return value.strip() if value and value.strip() else None

    values = {
        "dialect": _get("DIALECT"),
        "server": _get("SERVER") or "",
        "port": _get("PORT"),
        "authentication": _get("AUTH") or AuthenticationType.CREDENTIALS.value,
        "username": _get("USER") or "",
        "password": env.get(f"{prefix}_PASSWORD", ""),
        "timeout": _get("TIMEOUT") or 30,
        "trust_server_certificate": _coerce_bool(_get("TRUST_CERT") or "true"),
        "database": _get("DATABASE"),
    }
    driver = _get("ODBC_DRIVER")
    if driver:
        values["options"] = {"driver": driver}
    values.update({k: v for k, v in overrides.items() if v is not None})
    if not values.get("dialect"):
        raise ValueError(f"{prefix}_DIALECT is not set")
    return ConnectionParams(**values)
