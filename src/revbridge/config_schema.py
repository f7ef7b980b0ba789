"""Unified configuration schema for revbridge.

Defines Pydantic models for the unified config structure with dedicated
sections for the bridge itself and logging.

Usage:
    from revbridge.config_loader import load_hierarchical_config
    from revbridge.config_schema import build_config

    raw = load_hierarchical_config()
    unified = build_config(raw)
    unified.bridge.target_path
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = ".revbridge"
DEFAULT_FETCH_REF = "refs/remotes/revbridge/default"


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class BridgeConfig(BaseModel):
    """Settings for one bridged repository.

    ``target_path`` is optional here so that zero-config loading works;
    ``load_config()`` insists on it.
    """

    target_path: str | None = Field(
        default=None,
        description="Server path the repository is bridged to ($/...)",
    )
    deep: bool = Field(
        default=False,
        description="Check in one revision per commit instead of squashing",
    )
    lock: bool = Field(
        default=True,
        description="Lock the target path during deep check-ins",
    )
    auto_squash: bool = Field(
        default=False,
        description="Squash through non-linear merges instead of failing",
    )
    max_depth: int | None = Field(
        default=None,
        ge=1,
        description="Fold older commits so at most this many revisions are created",
    )
    squash: list[str] = Field(
        default_factory=list,
        description="Commit ids (or prefixes) already folded into history",
    )
    keep_empty_folders: bool = Field(
        default=False,
        description="Keep empty target folders as empty trees when fetching",
    )
    include_metadata: bool = Field(
        default=False,
        description="Prefix check-in comments with commit metadata",
    )
    state_dir: str = Field(
        default=DEFAULT_STATE_DIR,
        description="Directory holding the revision map",
    )
    map_name: str = Field(
        default="default", description="Revision map file name suffix"
    )
    fetch_ref: str = Field(
        default=DEFAULT_FETCH_REF,
        description="Ref updated with the newest fetched commit",
    )
    working_folder: str | None = Field(
        default=None,
        description="Working folder for check-ins (temporary if unset)",
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
        format: ``text`` or ``json``.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: str = Field(default="text", description="text or json")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has defaults, so ``UnifiedConfig()`` is always valid.
    """

    bridge: BridgeConfig = Field(default_factory=BridgeConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Missing sections get defaults.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)
