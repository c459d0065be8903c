"""Service config loading for Simple Redirect.

Reads `.redirector/config.yaml` (or `~/.redirector/config.yaml`).
Raises SystemExit on parse errors or missing `version` field.
If no config file is found, returns default values (safe to run without config).

This is the service's own configuration (where to persist state, engine
quota, bind address, logging). The redirect rules themselves live in the
config store, not here.

Config search order:
  1. `config_path` argument (if provided — for testing or explicit override)
  2. REDIRECTOR_CONFIG environment variable (if set)
  3. `.redirector/config.yaml` (working directory — for development)
  4. `~/.redirector/config.yaml` (home directory)

Environment variable overrides:
  REDIRECTOR_PORT         — overrides server.port
  REDIRECTOR_STORAGE_PATH — overrides storage.path
  REDIRECTOR_CONFIG       — sets an explicit config file path to try first
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from typing import Optional

import yaml

from redirector.constants import DEFAULT_MAX_RULES, GLOBAL_PAUSE_RULE_ID
from redirector.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Version constants ────────────────────────────────────────────────────────

SUPPORTED_CONFIG_VERSION = 1

SUPPORTED_VERSIONS: frozenset[int] = frozenset({1})

# ─── Validation sets ─────────────────────────────────────────────────────────

VALID_STORAGE_BACKENDS: frozenset[str] = frozenset({"sqlite", "memory"})

DEFAULT_CONFIG_PATHS = [
    ".redirector/config.yaml",
    os.path.expanduser("~/.redirector/config.yaml"),
]


# ─── Dataclasses ─────────────────────────────────────────────────────────────


@dataclass
class StorageConfig:
    """Persisted configuration store.

    backend: "sqlite" (survives restarts) | "memory" (lost on restart)
    path:    SQLite database file (sqlite backend only)
    """

    backend: str = "sqlite"
    path: str = "~/.redirector/state.db"


@dataclass
class EngineConfig:
    """Declarative engine settings."""

    max_rules: int = DEFAULT_MAX_RULES


@dataclass
class ServerConfig:
    """HTTP binding configuration."""

    host: str = "127.0.0.1"
    port: int = 4343


@dataclass
class LoggingConfig:
    level: str = "INFO"
    json: bool = True


@dataclass
class Config:
    """Root configuration object populated from .redirector/config.yaml.

    All fields have safe defaults — the service can start without any config file.
    """

    version: int = SUPPORTED_CONFIG_VERSION
    storage: StorageConfig = field(default_factory=StorageConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    path: Optional[str] = None  # Path to the loaded config file

    @classmethod
    def defaults(cls) -> "Config":
        """Return a fully-default Config (no file required)."""
        return cls()

    @classmethod
    def from_dict(cls, raw: dict, path: Optional[str] = None) -> "Config":
        """Construct Config from a parsed YAML dict.

        Merges user-supplied values onto defaults; unknown keys are silently ignored.

        Raises:
            SystemExit(1): On an invalid storage.backend or engine.max_rules.
        """
        # ── Storage ───────────────────────────────────────────────────────────
        storage_raw = raw.get("storage") or {}
        backend = storage_raw.get("backend", "sqlite")
        if backend not in VALID_STORAGE_BACKENDS:
            _fail(
                f"CONFIG ERROR: Invalid storage.backend: '{backend}'. "
                f"Supported values: {sorted(VALID_STORAGE_BACKENDS)}."
            )
        storage = StorageConfig(
            backend=backend,
            path=storage_raw.get("path", "~/.redirector/state.db"),
        )

        # ── Engine ────────────────────────────────────────────────────────────
        engine_raw = raw.get("engine") or {}
        max_rules = engine_raw.get("max_rules", DEFAULT_MAX_RULES)
        if not isinstance(max_rules, int) or not 0 < max_rules < GLOBAL_PAUSE_RULE_ID:
            _fail(
                f"CONFIG ERROR: engine.max_rules must be an integer between 1 and "
                f"{GLOBAL_PAUSE_RULE_ID - 1}, got {max_rules!r}."
            )
        engine = EngineConfig(max_rules=max_rules)

        # ── Server ────────────────────────────────────────────────────────────
        server_raw = raw.get("server") or {}
        server = ServerConfig(
            host=server_raw.get("host", "127.0.0.1"),
            port=server_raw.get("port", 4343),
        )

        # ── Logging ───────────────────────────────────────────────────────────
        logging_raw = raw.get("logging") or {}
        logging_config = LoggingConfig(
            level=str(logging_raw.get("level", "INFO")).upper(),
            json=bool(logging_raw.get("json", True)),
        )

        return cls(
            version=raw.get("version", SUPPORTED_CONFIG_VERSION),
            storage=storage,
            engine=engine,
            server=server,
            logging=logging_config,
            path=path,
        )


# ─── Config loading ───────────────────────────────────────────────────────────


def load_config(config_path: Optional[str] = None) -> Config:
    """Load and validate the service configuration.

    If no file is found at any search path, returns default Config (not an error).
    If a file is found but invalid, writes error to stderr and raises SystemExit(1).

    Env overrides (REDIRECTOR_PORT, REDIRECTOR_STORAGE_PATH) are applied last,
    whether or not a config file was found.

    Raises:
        SystemExit(1): On YAML parse error, missing ``version`` field, unsupported
                       version, invalid ``storage.backend`` or ``engine.max_rules``,
                       or invalid ``REDIRECTOR_PORT``.
    """
    search_paths: list[str] = []
    if config_path:
        search_paths.append(config_path)
    env_config = os.environ.get("REDIRECTOR_CONFIG")
    if env_config:
        search_paths.append(env_config)
    search_paths.extend(DEFAULT_CONFIG_PATHS)

    found_path: Optional[str] = None
    for candidate in search_paths:
        expanded = os.path.expanduser(candidate)
        if os.path.isfile(expanded):
            found_path = expanded
            break

    # ── No config file found ─────────────────────────────────────────────────
    if found_path is None:
        logger.info("No config file found — using defaults", searched=search_paths)
        config = Config.defaults()
        _apply_env_overrides(config)
        return config

    # ── Parse config file ─────────────────────────────────────────────────────
    logger.info("Loading config", path=found_path)

    try:
        with open(found_path) as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        _fail(
            f"CONFIG ERROR: Failed to parse {found_path}: {exc}\n"
            "Simple Redirect refuses to start with an invalid config. "
            "Check the YAML syntax and try again."
        )
    except OSError as exc:
        _fail(f"CONFIG ERROR: Could not read {found_path}: {exc}")

    if not isinstance(raw, dict):
        if raw is None:
            _fail(
                f"CONFIG ERROR: {found_path} is missing the required 'version' field.\n"
                "Add 'version: 1' to the top of your config file."
            )
        _fail(
            f"CONFIG ERROR: {found_path} is not a valid YAML mapping.\n"
            "The config file must be a YAML dictionary at the top level."
        )

    # ── Version validation ────────────────────────────────────────────────────
    version = raw.get("version")
    if version is None:
        _fail(
            f"CONFIG ERROR: {found_path} is missing the required 'version' field.\n"
            "Add 'version: 1' to the top of your config file."
        )
    if version not in SUPPORTED_VERSIONS:
        _fail(
            f"CONFIG ERROR: Unsupported config version: {version}. "
            f"Supported versions: {sorted(SUPPORTED_VERSIONS)}."
        )

    config = Config.from_dict(raw, path=found_path)
    _apply_env_overrides(config)

    if config.server.host == "0.0.0.0":
        logger.warning(
            "SECURITY WARNING: the rule API is bound on 0.0.0.0 (all interfaces). "
            "Anyone on the network can edit redirects. "
            "Recommended: server.host: '127.0.0.1'."
        )
    if config.storage.backend == "memory":
        logger.warning("storage.backend is 'memory' — redirect rules are lost on restart")

    logger.info(
        "Config loaded",
        path=found_path,
        version=config.version,
        storage_backend=config.storage.backend,
    )
    return config


def _apply_env_overrides(config: Config) -> None:
    """Apply environment variable overrides to a Config object in-place.

    Raises:
        SystemExit(1): If REDIRECTOR_PORT is set but not a valid integer.
    """
    env_port = os.environ.get("REDIRECTOR_PORT")
    if env_port is not None:
        try:
            config.server.port = int(env_port)
        except ValueError:
            _fail(
                f"CONFIG ERROR: REDIRECTOR_PORT environment variable is not a valid "
                f"integer: '{env_port}'"
            )

    env_storage_path = os.environ.get("REDIRECTOR_STORAGE_PATH")
    if env_storage_path:
        config.storage.path = env_storage_path


def _fail(msg: str) -> "NoReturn":  # type: ignore[name-defined]
    print(msg, file=sys.stderr)
    raise SystemExit(1)
