"""
bootstrap/ - Bootstrap Layer

Configuration, logging setup, application assembly with fail-fast graph
validation, and the `fingraph` command.
"""

from .config import (
    FinGraphConfig,
    APIConfig,
    GraphConfig,
    EventLogConfig,
    ClientConfig,
    LoggingConfig,
    load_config,
    get_config,
    reset_config,
)

from .app import (
    AppState,
    AppContext,
    FinGraphApp,
    create_app,
)

from .entrypoints import (
    main,
    setup_logging,
)


__all__ = [
    # Config
    "FinGraphConfig",
    "APIConfig",
    "GraphConfig",
    "EventLogConfig",
    "ClientConfig",
    "LoggingConfig",
    "load_config",
    "get_config",
    "reset_config",
    # App
    "AppState",
    "AppContext",
    "FinGraphApp",
    "create_app",
    # Entry Points
    "main",
    "setup_logging",
]
