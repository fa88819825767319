"""
Configuration loader module.

Provides access to the persona mappings: which modes exist, what they are
called, their timing overrides and their message lists. This is the
single source of truth for persona name -> mode id relationships.

Nothing is cached at module level; callers load once and hold the result.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

_CONFIG_DIR = Path(__file__).parent
PERSONA_MAPPINGS_PATH = _CONFIG_DIR / "persona_mappings.json"


def load_persona_mappings(path: str | Path | None = None) -> dict[str, Any]:
    """
    Load and return the persona mappings configuration.

    Args:
        path: Alternative JSON file; defaults to the bundled persona_mappings.json
    """
    mappings_path = Path(path) if path is not None else PERSONA_MAPPINGS_PATH
    if not mappings_path.exists():
        raise FileNotFoundError(f"Persona mappings not found: {mappings_path}")

    with open(mappings_path, encoding="utf-8") as f:
        return json.load(f)


def get_available_modes(mappings: dict[str, Any]) -> list[str]:
    """Mode ids in declaration order, e.g. ['corporate-ai', 'zen-monk', 'chaos']."""
    return list(mappings["modes"])


def get_display_names(mappings: dict[str, Any]) -> dict[str, str]:
    """
    Get mapping of mode_id -> display name.

    Example: {'corporate-ai': 'Corporate AI', 'zen-monk': 'Zen Monk'}
    """
    return {
        mode_id: config.get("displayName", mode_id)
        for mode_id, config in mappings["modes"].items()
    }


def get_name_table(mappings: dict[str, Any]) -> dict[str, str]:
    """
    Get mapping of lower-case persona name -> mode_id.

    Includes display names and every alias listed under "names".

    Example: {'zen monk': 'zen-monk', 'zen': 'zen-monk', 'corp': 'corporate-ai'}
    """
    table: dict[str, str] = {}
    for mode_id, config in mappings["modes"].items():
        table[config.get("displayName", mode_id).lower()] = mode_id
        for alias in config.get("names", []):
            table[alias.lower()] = mode_id
    return table


def get_master_messages(mappings: dict[str, Any]) -> dict[str, list[str]]:
    """Get category -> master message list used for mixed pools."""
    return {category: list(msgs) for category, msgs in mappings.get("masterMessages", {}).items()}


# Export commonly used items
__all__ = [
    "PERSONA_MAPPINGS_PATH",
    "get_available_modes",
    "get_display_names",
    "get_master_messages",
    "get_name_table",
    "load_persona_mappings",
]
