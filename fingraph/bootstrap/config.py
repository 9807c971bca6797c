"""
bootstrap/config.py - Application configuration

Provides configuration loading from files, environment variables, and defaults.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from pathlib import Path
import os
import json
import logging

from fingraph.dependencies.scope import DEFAULT_MAX_YEAR, DEFAULT_MIN_YEAR

logger = logging.getLogger("bootstrap.config")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class APIConfig:
    """API server configuration."""

    host: str = "0.0.0.0"
    port: int = 8000
    enable_docs: bool = True
    docs_url: str = "/docs"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    default_events_limit: int = 20
    max_events_limit: int = 500

    @classmethod
    def from_env(cls) -> "APIConfig":
        cors = os.getenv("FINGRAPH_API_CORS_ORIGINS", "*")
        return cls(
            host=os.getenv("FINGRAPH_API_HOST", "0.0.0.0"),
            port=int(os.getenv("FINGRAPH_API_PORT", "8000")),
            enable_docs=_env_bool("FINGRAPH_API_ENABLE_DOCS", "true"),
            docs_url=os.getenv("FINGRAPH_API_DOCS_URL", "/docs"),
            cors_origins=cors.split(",") if cors else ["*"],
            default_events_limit=int(os.getenv("FINGRAPH_API_EVENTS_LIMIT", "20")),
            max_events_limit=int(os.getenv("FINGRAPH_API_EVENTS_MAX", "500")),
        )


@dataclass
class GraphConfig:
    """Dependency graph and scope configuration."""

    min_year: int = DEFAULT_MIN_YEAR
    max_year: int = DEFAULT_MAX_YEAR
    # source -> [targets]; empty means the built-in domain edges
    edges: Dict[str, List[str]] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "GraphConfig":
        return cls(
            min_year=int(os.getenv("FINGRAPH_MIN_YEAR", str(DEFAULT_MIN_YEAR))),
            max_year=int(os.getenv("FINGRAPH_MAX_YEAR", str(DEFAULT_MAX_YEAR))),
        )


@dataclass
class EventLogConfig:
    """Audit log retention and export."""

    max_entries: int = 10000
    export_path: Optional[str] = None

    @classmethod
    def from_env(cls) -> "EventLogConfig":
        return cls(
            max_entries=int(os.getenv("FINGRAPH_EVENTS_MAX_ENTRIES", "10000")),
            export_path=os.getenv("FINGRAPH_EVENTS_EXPORT"),
        )


@dataclass
class ClientConfig:
    """HTTP client configuration."""

    base_url: str = "http://localhost:8000"
    timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> "ClientConfig":
        return cls(
            base_url=os.getenv("FINGRAPH_CLIENT_URL", "http://localhost:8000"),
            timeout_seconds=float(os.getenv("FINGRAPH_CLIENT_TIMEOUT", "30")),
        )


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_file: Optional[str] = None
    json_logs: bool = False

    @classmethod
    def from_env(cls) -> "LoggingConfig":
        return cls(
            level=os.getenv("FINGRAPH_LOG_LEVEL", "INFO"),
            format=os.getenv("FINGRAPH_LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"),
            log_file=os.getenv("FINGRAPH_LOG_FILE"),
            json_logs=_env_bool("FINGRAPH_JSON_LOGS", "false"),
        )


@dataclass
class FinGraphConfig:
    """Root configuration for the FinGraph service."""

    environment: str = "development"
    debug: bool = False
    version: str = "0.3.0"

    api: APIConfig = field(default_factory=APIConfig)
    graph: GraphConfig = field(default_factory=GraphConfig)
    events: EventLogConfig = field(default_factory=EventLogConfig)
    client: ClientConfig = field(default_factory=ClientConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls) -> "FinGraphConfig":
        """Create configuration from environment variables."""
        return cls(
            environment=os.getenv("FINGRAPH_ENVIRONMENT", "development"),
            debug=_env_bool("FINGRAPH_DEBUG", "false"),
            api=APIConfig.from_env(),
            graph=GraphConfig.from_env(),
            events=EventLogConfig.from_env(),
            client=ClientConfig.from_env(),
            logging=LoggingConfig.from_env(),
        )

    @classmethod
    def from_file(cls, filepath: str) -> "FinGraphConfig":
        """Load configuration from JSON file."""
        path = Path(filepath)
        if not path.exists():
            logger.warning(f"Config file not found: {filepath}, using defaults")
            return cls.from_env()

        with open(path) as f:
            data = json.load(f)

        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> "FinGraphConfig":
        """Create config from dictionary, overlaying the environment."""
        config = cls.from_env()

        if "environment" in data:
            config.environment = data["environment"]
        if "debug" in data:
            config.debug = data["debug"]

        for section in ("api", "graph", "events", "client", "logging"):
            target = getattr(config, section)
            for key, value in data.get(section, {}).items():
                if hasattr(target, key):
                    setattr(target, key, value)
                else:
                    logger.warning(f"Ignoring unknown config key: {section}.{key}")

        return config

    def to_dict(self) -> Dict[str, Any]:
        """Serialize config to dictionary."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "version": self.version,
            "api": {
                "host": self.api.host,
                "port": self.api.port,
            },
            "graph": {
                "min_year": self.graph.min_year,
                "max_year": self.graph.max_year,
                "edges": self.graph.edges,
            },
            "events": {
                "max_entries": self.events.max_entries,
            },
            "client": {
                "base_url": self.client.base_url,
            },
        }


# Global config instance
_config: Optional[FinGraphConfig] = None


def load_config(filepath: str = None) -> FinGraphConfig:
    """
    Load configuration from file or environment.

    Args:
        filepath: Optional path to JSON config file

    Returns:
        FinGraphConfig instance
    """
    global _config

    if filepath:
        _config = FinGraphConfig.from_file(filepath)
    else:
        default_paths = [
            "./fingraph.json",
            "./config/fingraph.json",
            os.path.expanduser("~/.fingraph/config.json"),
        ]

        for path in default_paths:
            if Path(path).exists():
                logger.info(f"Loading config from: {path}")
                _config = FinGraphConfig.from_file(path)
                return _config

        _config = FinGraphConfig.from_env()

    logger.info(f"Configuration loaded: environment={_config.environment}")
    return _config


def get_config() -> FinGraphConfig:
    """Get current configuration, loading if needed."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Forget the loaded configuration (tests)."""
    global _config
    _config = None
