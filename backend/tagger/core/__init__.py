"""Core utilities and configuration."""

from tagger.core.config import Settings, get_settings
from tagger.core.database import (
    Base,
    db_manager,
    enable_sqlite_foreign_keys,
    session_scope,
    transaction,
)
from tagger.core.logging import (
    claude_logger,
    db_logger,
    get_logger,
    setup_logging,
    tagging_logger,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "Base",
    "db_manager",
    "enable_sqlite_foreign_keys",
    "session_scope",
    "transaction",
    # Logging
    "claude_logger",
    "db_logger",
    "get_logger",
    "setup_logging",
    "tagging_logger",
]
