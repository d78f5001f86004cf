"""
Inventory Configuration (``inventory_config``).

Single entry point for the costing policy: ``get_active_policy()``.
Services receive the returned ``CostingPolicy`` by injection and never read
files or environment variables themselves.

Resolution order:
    1. explicit ``path`` argument
    2. ``INVENTORY_COSTING_CONFIG`` environment variable
    3. the bundled ``sets/default.yaml``
"""

from __future__ import annotations

import os
from pathlib import Path

from inventory_config.loader import load_yaml_file, parse_costing_policy
from inventory_config.schema import CostingPolicy
from inventory_kernel.logging_config import get_logger

logger = get_logger("config")

CONFIG_ENV_VAR = "INVENTORY_COSTING_CONFIG"
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"
_DEFAULT_CONFIG_FILE = _DEFAULT_CONFIG_DIR / "default.yaml"

__all__ = ["CONFIG_ENV_VAR", "CostingPolicy", "get_active_policy"]


def get_active_policy(path: Path | str | None = None) -> CostingPolicy:
    """Load and validate the active costing policy.

    Raises:
        FileNotFoundError: the resolved file does not exist.
        ValueError: the document fails validation.
    """
    env_path = os.environ.get(CONFIG_ENV_VAR)
    source = Path(path) if path is not None else Path(env_path) if env_path else _DEFAULT_CONFIG_FILE

    policy = parse_costing_policy(load_yaml_file(source))
    logger.info(
        "costing_policy_loaded",
        extra={
            "source": str(source),
            "policy_name": policy.name,
            "default_method": policy.default_method.value,
            "oversell_policy": policy.oversell_policy.value,
            "checksum": policy.checksum,
        },
    )
    return policy
