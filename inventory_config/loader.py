"""
Configuration Loader (``inventory_config.loader``).

Responsibility
--------------
Loads a costing-policy YAML file and parses it into the frozen
``CostingPolicy`` dataclass.  Runtime callers use
``inventory_config.get_active_policy()``.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` naming the offending field; unknown
  keys are rejected rather than ignored.
* ``compute_checksum`` gives a deterministic SHA-256 over the parsed
  document so a run log can record exactly which policy it ran under.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from inventory_config.schema import CostingPolicy
from inventory_engines.costing.types import CostingMethod, OversellPolicy
from inventory_kernel.exceptions import InvalidCostingMethodError

_KNOWN_KEYS = frozenset({
    "name",
    "default_method",
    "oversell_policy",
    "restock_on_reversal",
    "conflict_retries",
    "cancelled_statuses",
})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def parse_method(value: Any) -> CostingMethod:
    try:
        return CostingMethod.parse(value)
    except InvalidCostingMethodError as exc:
        raise ValueError(f"default_method: {exc}") from exc


def parse_oversell(value: Any) -> OversellPolicy:
    try:
        return OversellPolicy(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(p.value for p in OversellPolicy)
        raise ValueError(
            f"oversell_policy: {value!r} is not one of {allowed}"
        ) from None


def parse_costing_policy(data: dict[str, Any]) -> CostingPolicy:
    """Parse the ``costing`` section of a policy document."""
    section = data.get("costing", data)
    if not isinstance(section, dict):
        raise ValueError("costing: expected a mapping")

    unknown = set(section) - _KNOWN_KEYS
    if unknown:
        raise ValueError(f"costing: unknown keys {sorted(unknown)}")

    retries = section.get("conflict_retries", 1)
    if not isinstance(retries, int) or isinstance(retries, bool) or retries < 0:
        raise ValueError(f"conflict_retries: expected a non-negative integer, got {retries!r}")

    restock = section.get("restock_on_reversal", True)
    if not isinstance(restock, bool):
        raise ValueError(f"restock_on_reversal: expected true/false, got {restock!r}")

    statuses = section.get("cancelled_statuses", ["cancelled"])
    if isinstance(statuses, str) or not all(isinstance(s, str) for s in statuses):
        raise ValueError("cancelled_statuses: expected a list of strings")

    return CostingPolicy(
        name=str(section.get("name", "default")),
        default_method=parse_method(section.get("default_method", "FIFO")),
        oversell_policy=parse_oversell(section.get("oversell_policy", "block")),
        restock_on_reversal=restock,
        conflict_retries=retries,
        cancelled_statuses=tuple(s.strip().lower() for s in statuses),
        checksum=compute_checksum(data),
    )
