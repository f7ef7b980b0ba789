"""Bridge configuration loading.

Resolves bridge settings from explicit overrides, environment variables,
.env files, and YAML config fallbacks.

Precedence (highest to lowest):
    Overrides > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    REVBRIDGE_TARGET_PATH: Server path to bridge to (required)
    REVBRIDGE_DEEP: Check in one revision per commit (optional, default: false)
    REVBRIDGE_LOCK: Lock the target during deep check-ins (optional, default: true)
    REVBRIDGE_AUTO_SQUASH: Squash through non-linear merges (optional, default: false)
    REVBRIDGE_MAX_DEPTH: Maximum revisions per check-in (optional)
    REVBRIDGE_STATE_DIR: Directory for the revision map (optional, default: .revbridge)
"""

import logging
import os
from typing import Any

from dotenv import load_dotenv

from revbridge.config_loader import load_hierarchical_config
from revbridge.config_schema import BridgeConfig, build_config
from revbridge.logger import setup_logging
from revbridge.validators import validate_server_path

logger = logging.getLogger(__name__)


def get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def validate_config(config: BridgeConfig) -> None:
    """Validate a resolved bridge configuration.

    Raises:
        ValueError: If the target path is missing or malformed.
    """
    if not config.target_path:
        raise ValueError(
            "Target path not found. Set REVBRIDGE_TARGET_PATH environment "
            "variable, pass target_path, or add 'target_path' to the "
            "'bridge' section of config.yml."
        )

    is_valid, message = validate_server_path(config.target_path)
    if not is_valid:
        raise ValueError(f"Invalid target path: {message}")

    if config.deep and not config.lock:
        logger.warning(
            "Deep check-ins without a lock can only detect concurrent "
            "writers after the fact"
        )


def load_config(
    overrides: dict[str, Any] | None = None,
    yaml_fallbacks: dict | None = None,
    *,
    dotenv: bool = True,
) -> BridgeConfig:
    """Load bridge configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        override > env var / .env > yaml_fallbacks > built-in default

    Args:
        overrides: Explicit values (e.g. from a caller's CLI).  ``None``
            values are ignored.
        yaml_fallbacks: The ``bridge`` section of the YAML config.
        dotenv: Load a ``.env`` file into the environment first.

    Returns:
        Validated ``BridgeConfig``.

    Raises:
        ValueError: If the target path is missing or any value is invalid.
    """
    if dotenv:
        load_dotenv()

    ov = {k: v for k, v in (overrides or {}).items() if v is not None}
    values: dict[str, Any] = dict(yaml_fallbacks or {})

    # --- String fields: env > YAML ---

    for field, env_key in (
        ("target_path", "REVBRIDGE_TARGET_PATH"),
        ("state_dir", "REVBRIDGE_STATE_DIR"),
    ):
        env_val = os.getenv(env_key)
        if env_val:
            values[field] = env_val.strip()

    # --- Boolean fields: env > YAML > default ---

    for field, env_key in (
        ("deep", "REVBRIDGE_DEEP"),
        ("lock", "REVBRIDGE_LOCK"),
        ("auto_squash", "REVBRIDGE_AUTO_SQUASH"),
    ):
        env_flag = get_bool_env(env_key)
        if env_flag is not None:
            values[field] = env_flag

    # --- Numeric fields: env > YAML > default ---

    max_depth_raw = os.getenv("REVBRIDGE_MAX_DEPTH")
    if max_depth_raw is not None:
        try:
            max_depth = int(max_depth_raw)
        except ValueError:
            raise ValueError(
                f"Invalid REVBRIDGE_MAX_DEPTH '{max_depth_raw}': must be a positive number"
            ) from None
        if max_depth < 1:
            raise ValueError(
                f"Invalid REVBRIDGE_MAX_DEPTH '{max_depth_raw}': must be a positive number"
            )
        values["max_depth"] = max_depth

    # --- Overrides beat everything ---

    values.update(ov)

    config = BridgeConfig(**values)
    validate_config(config)
    return config


def bootstrap(overrides: dict[str, Any] | None = None) -> BridgeConfig:
    """Configure logging and resolve the bridge settings for one run.

    Loads ``.env`` first so YAML ``${VAR}`` interpolation can see its
    values, then the hierarchical YAML config.  The ``logging`` section
    drives ``setup_logging()``; the ``bridge`` section becomes the YAML
    fallbacks for ``load_config()``.

    Raises:
        ValueError: If the resolved configuration is invalid.
    """
    load_dotenv()

    unified = build_config(load_hierarchical_config())
    setup_logging(
        log_file=unified.logging.file,
        debug_format=unified.logging.format,
        level=unified.logging.level,
    )

    yaml_fallbacks = {
        k: v for k, v in unified.bridge.model_dump().items() if v is not None
    }
    try:
        config = load_config(overrides, yaml_fallbacks, dotenv=False)
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        raise

    logger.info("Bridging to %s", config.target_path)
    return config
