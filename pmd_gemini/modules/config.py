"""
PMD-Gemini Service - Configuration

Settings come from three layers, later layers winning:
1. built-in defaults
2. an optional YAML file (``PMD_CONFIG`` or ``--config``)
3. environment variables (a ``.env`` file is loaded first when present)
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml
from dotenv import load_dotenv
from loguru import logger

from .errors import ConfigError

DEFAULT_ANALYZER_COMMAND: Tuple[str, ...] = (
    "sf",
    "code-analyzer",
    "run",
    "--rule-selector",
    "pmd:Recommended",
    "--workspace",
)
DEFAULT_GEMINI_MODEL = "gemini/gemini-1.5-flash"


@dataclass(frozen=True)
class ServiceConfig:
    host: str = "0.0.0.0"
    port: int = 8080

    # AI collaborator
    gemini_api_key: Optional[str] = None
    gemini_model: str = DEFAULT_GEMINI_MODEL
    gemini_timeout_seconds: float = 45.0

    # Analyzer invocation; the artifact path is appended as the last argument.
    analyzer_command: Tuple[str, ...] = DEFAULT_ANALYZER_COMMAND
    scan_timeout_seconds: float = 50.0
    upstream_timeout_seconds: float = 60.0
    max_source_chars: int = 100_000
    max_output_bytes: int = 10_000_000
    artifact_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))

    allowed_origins: Tuple[str, ...] = ("*",)
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not self.analyzer_command:
            raise ConfigError("analyzer_command must not be empty")
        if self.scan_timeout_seconds <= 0:
            raise ConfigError("scan_timeout_seconds must be > 0")
        # The scan must fail on its own deadline before any outer HTTP timeout fires.
        if self.scan_timeout_seconds >= self.upstream_timeout_seconds:
            raise ConfigError(
                "scan_timeout_seconds must be lower than upstream_timeout_seconds "
                f"({self.scan_timeout_seconds} >= {self.upstream_timeout_seconds})"
            )
        if self.max_source_chars <= 0:
            raise ConfigError("max_source_chars must be > 0")
        if self.max_output_bytes <= 0:
            raise ConfigError("max_output_bytes must be > 0")
        if self.gemini_timeout_seconds <= 0:
            raise ConfigError("gemini_timeout_seconds must be > 0")
        if not 0 < self.port < 65536:
            raise ConfigError(f"port out of range: {self.port}")

    @property
    def analyzer_binary(self) -> str:
        return self.analyzer_command[0]

    @property
    def gemini_enabled(self) -> bool:
        return bool(self.gemini_api_key)


# Environment variable -> (config field, parser)
_ENV_FIELDS: Dict[str, Tuple[str, str]] = {
    "HOST": ("host", "str"),
    "PORT": ("port", "int"),
    "GEMINI_API_KEY": ("gemini_api_key", "str"),
    "PMD_GEMINI_MODEL": ("gemini_model", "str"),
    "PMD_GEMINI_TIMEOUT_SECONDS": ("gemini_timeout_seconds", "float"),
    "PMD_ANALYZER_CMD": ("analyzer_command", "argv"),
    "PMD_SCAN_TIMEOUT_SECONDS": ("scan_timeout_seconds", "float"),
    "PMD_UPSTREAM_TIMEOUT_SECONDS": ("upstream_timeout_seconds", "float"),
    "PMD_MAX_SOURCE_CHARS": ("max_source_chars", "int"),
    "PMD_MAX_OUTPUT_BYTES": ("max_output_bytes", "int"),
    "PMD_ARTIFACT_DIR": ("artifact_dir", "path"),
    "PMD_ALLOWED_ORIGINS": ("allowed_origins", "csv"),
    "PMD_LOG_LEVEL": ("log_level", "str"),
}


def _split_argv(value: Any) -> Tuple[str, ...]:
    if isinstance(value, (list, tuple)):
        return tuple(str(v) for v in value)
    # Whitespace split only; use a YAML list for arguments containing spaces.
    return tuple(str(value).split())


def _split_csv(value: Any) -> Tuple[str, ...]:
    if isinstance(value, (list, tuple)):
        return tuple(str(v).strip() for v in value if str(v).strip())
    return tuple(part.strip() for part in str(value).split(",") if part.strip())


def _coerce(name: str, kind: str, value: Any) -> Any:
    try:
        if kind == "int":
            return int(value)
        if kind == "float":
            return float(value)
        if kind == "path":
            return Path(str(value)).expanduser()
        if kind == "argv":
            return _split_argv(value)
        if kind == "csv":
            return _split_csv(value)
        return None if value is None else str(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {name}: {value!r} ({e})") from e


def _load_yaml(config_path: Path) -> Dict[str, Any]:
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")
    return data


def load_config(
    config_path: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
) -> ServiceConfig:
    """Build a validated ServiceConfig.

    Args:
        config_path: Optional YAML file; falls back to ``PMD_CONFIG``.
        env: Environment mapping; defaults to ``os.environ`` after loading ``.env``.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    values: Dict[str, Any] = {}
    known_fields = {name for name, _ in _ENV_FIELDS.values()}

    yaml_path = config_path or env.get("PMD_CONFIG")
    if yaml_path:
        path = Path(yaml_path)
        if path.exists():
            for key, raw in _load_yaml(path).items():
                if key not in known_fields:
                    logger.warning(f"Ignoring unknown config key '{key}' in {path}")
                    continue
                kind = next(k for n, k in _ENV_FIELDS.values() if n == key)
                values[key] = _coerce(key, kind, raw)
            logger.info(f"Loaded config from {path}")
        else:
            logger.warning(f"Config file not found: {path}. Using defaults.")

    for env_name, (field_name, kind) in _ENV_FIELDS.items():
        raw = env.get(env_name)
        if raw is None or raw == "":
            continue
        values[field_name] = _coerce(env_name, kind, raw)

    return ServiceConfig(**values)


def describe(config: ServiceConfig) -> List[str]:
    """Startup summary lines; never includes the API key."""
    return [
        f"port={config.port} host={config.host}",
        f"analyzer={' '.join(config.analyzer_command)}",
        f"scan_timeout={config.scan_timeout_seconds}s upstream_timeout={config.upstream_timeout_seconds}s",
        f"max_source_chars={config.max_source_chars} max_output_bytes={config.max_output_bytes}",
        f"artifact_dir={config.artifact_dir}",
        f"gemini={'configured' if config.gemini_enabled else 'not configured'} model={config.gemini_model}",
    ]
