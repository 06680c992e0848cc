"""Cached data loaders for the column type catalog."""

# purpose: expose cached loaders for the data type / view type / migration mapping
# status: active
# depends_on: json, pathlib

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any

_BASE_DIR = Path(__file__).resolve().parent


def _load_json(path: Path) -> Any:
    """Return parsed JSON payload from disk."""

    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


@lru_cache(maxsize=None)
def get_data_type_mapping() -> dict[str, dict[str, tuple[str, ...]]]:
    """Return the cached type compatibility mapping keyed by section."""

    payload = _load_json(_BASE_DIR / "data_type_mapping.json")
    return {
        section: {key: tuple(values) for key, values in entries.items()}
        for section, entries in payload.items()
    }
