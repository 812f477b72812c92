"""Configuration loading module.

This module handles:
- Reading the INI config file ([tauron], [postgres], [exporter] sections)
- Applying environment variable overrides (loaded from .env by main)
- Validating required keys before any network or database activity
"""

import configparser
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from elicznik.scraper import LOGIN_URL, SERVICE_URL, STRATEGIES
from elicznik.tauron_parser import VOCABULARIES
from elicznik.database import DEFAULT_PROCEDURE

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "/etc/elicznik.conf"

END_DATE_POLICIES = ("today", "provider")

# (section, key) -> environment variable overriding it
ENV_OVERRIDES = {
    ("tauron", "username"): "TAURON_USERNAME",
    ("tauron", "password"): "TAURON_PASSWORD",
    ("postgres", "host"): "POSTGRES_HOST",
    ("postgres", "dbname"): "POSTGRES_DBNAME",
    ("postgres", "username"): "POSTGRES_USERNAME",
    ("postgres", "password"): "POSTGRES_PASSWORD",
}

REQUIRED_KEYS = {
    "tauron": ("username", "password"),
    "postgres": ("host", "dbname", "username", "password"),
}


class ConfigError(Exception):
    """Exception raised for missing or invalid configuration."""
    pass


@dataclass
class TauronConfig:
    """Portal credentials and fetch settings."""
    username: str
    password: str
    strategy: str = "api"
    csv_vocabulary: str = "full"
    end_date: str = "today"
    login_url: str = LOGIN_URL
    service_url: str = SERVICE_URL
    data_url: Optional[str] = None
    timeout: float = 60


@dataclass
class PostgresConfig:
    """Database connection settings."""
    host: str
    dbname: str
    username: str
    password: str
    port: int = 5432
    sslmode: str = "require"
    procedure: str = DEFAULT_PROCEDURE


@dataclass
class ExporterConfig:
    """Daemon mode settings: metrics port and daily run hour."""
    port: int = 9120
    schedule_hour: int = 4


@dataclass
class Config:
    """Complete configuration.

    Attributes:
        tauron: Portal settings, None when the section is absent
        postgres: Database settings, None when the section is absent
        exporter: Daemon mode settings
    """
    tauron: Optional[TauronConfig] = None
    postgres: Optional[PostgresConfig] = None
    exporter: ExporterConfig = field(default_factory=ExporterConfig)


def _section_values(parser: configparser.ConfigParser, section: str) -> Optional[Dict[str, str]]:
    """Merge a config section with its environment overrides.

    Returns None when neither the section nor any override is present.
    """
    values = dict(parser.items(section)) if parser.has_section(section) else None
    for (env_section, key), env_name in ENV_OVERRIDES.items():
        env_value = os.getenv(env_name)
        if env_section == section and env_value:
            if values is None:
                values = {}
            values[key] = env_value
    return values


def _number(values: Dict[str, str], section: str, key: str, default, kind=int):
    raw = values.get(key)
    if raw is None or raw == "":
        return default
    try:
        return kind(raw)
    except ValueError:
        raise ConfigError(f"Invalid value for `{key}` in [{section}]: {raw!r}")


def _choice(values: Dict[str, str], section: str, key: str, default: str, choices) -> str:
    value = values.get(key) or default
    if value not in choices:
        raise ConfigError(f"Invalid value for `{key}` in [{section}]: {value!r}, "
                          f"expected one of: {', '.join(choices)}")
    return value


def _missing(values: Optional[Dict[str, str]], section: str) -> List[str]:
    if values is None:
        return [f"[{section}] section"]
    return [f"`{key}` in [{section}]" for key in REQUIRED_KEYS[section] if not values.get(key)]


def load_config(path: str = DEFAULT_CONFIG_PATH, require_tauron: bool = True) -> Config:
    """Load configuration from an INI file plus environment overrides.

    Required (when the section is used):
        [tauron] username, password
        [postgres] host, dbname, username, password

    Optional:
        [tauron] strategy (api/csv/charts), csv_vocabulary (full/raw),
                 end_date (today/provider), login_url, service_url, data_url, timeout
        [postgres] port (5432), sslmode (require), procedure (tauron_add_entry)
        [exporter] port (9120), schedule_hour (4)

    An absent [postgres] section disables storage. A [postgres] section
    with missing keys is an error.

    Args:
        path: Config file path
        require_tauron: Whether the [tauron] section must be complete

    Returns:
        Loaded Config

    Raises:
        ConfigError: If the file cannot be read or keys are missing/invalid
    """
    parser = configparser.ConfigParser(interpolation=None)
    try:
        with open(path, encoding="utf-8") as f:
            parser.read_file(f)
    except OSError as e:
        raise ConfigError(f"Cannot open config file: {e}")
    except configparser.Error as e:
        raise ConfigError(f"Cannot parse config file {path}: {e}")

    config = Config()
    missing = []

    tauron = _section_values(parser, "tauron")
    if require_tauron:
        missing.extend(_missing(tauron, "tauron"))

    postgres = _section_values(parser, "postgres")
    if postgres is not None:
        missing.extend(_missing(postgres, "postgres"))

    if missing:
        raise ConfigError(f"Missing required configuration: {', '.join(missing)}")

    if tauron is not None and tauron.get("username") and tauron.get("password"):
        config.tauron = TauronConfig(
            username=tauron["username"],
            password=tauron["password"],
            strategy=_choice(tauron, "tauron", "strategy", "api", tuple(STRATEGIES)),
            csv_vocabulary=_choice(tauron, "tauron", "csv_vocabulary", "full", tuple(VOCABULARIES)),
            end_date=_choice(tauron, "tauron", "end_date", "today", END_DATE_POLICIES),
            login_url=tauron.get("login_url") or LOGIN_URL,
            service_url=tauron.get("service_url") or SERVICE_URL,
            data_url=tauron.get("data_url") or None,
            timeout=_number(tauron, "tauron", "timeout", 60.0, float),
        )

    if postgres is not None:
        config.postgres = PostgresConfig(
            host=postgres["host"],
            dbname=postgres["dbname"],
            username=postgres["username"],
            password=postgres["password"],
            port=_number(postgres, "postgres", "port", 5432),
            sslmode=postgres.get("sslmode") or "require",
            procedure=postgres.get("procedure") or DEFAULT_PROCEDURE,
        )

    exporter = dict(parser.items("exporter")) if parser.has_section("exporter") else {}
    config.exporter = ExporterConfig(
        port=_number(exporter, "exporter", "port", 9120),
        schedule_hour=_number(exporter, "exporter", "schedule_hour", 4),
    )
    if not (0 <= config.exporter.schedule_hour <= 23):
        raise ConfigError(f"Invalid value for `schedule_hour` in [exporter]: {config.exporter.schedule_hour}")

    logger.info(f"Configuration loaded from {path}: "
                f"tauron={'yes' if config.tauron else 'no'}, "
                f"postgres={'yes' if config.postgres else 'no'}")
    return config
