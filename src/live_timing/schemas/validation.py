"""JSON Schema validation helpers for replay inputs and streaming envelopes.

Thin wrapper around jsonschema; schema documents live beside this module.
"""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict

import jsonschema

SCHEMA_DIR = Path(__file__).parent

SCHEMA_MAP = {
    "race_data": "race_data.schema.json",
    "laps": "laps.schema.json",
    "stream_message": "stream_message.schema.json",
}


@lru_cache(maxsize=16)
def _load_schema(name: str) -> Dict[str, Any]:
    path = SCHEMA_DIR / name
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def validate(kind: str, payload: Any) -> None:
    """Validate payload against the schema registered for `kind`.

    Raises jsonschema.ValidationError on failure.
    """
    schema_file = SCHEMA_MAP.get(kind)
    if not schema_file:
        raise ValueError(f"No schema registered for {kind}")
    jsonschema.validate(instance=payload, schema=_load_schema(schema_file))


def is_valid(kind: str, payload: Any) -> bool:
    try:
        validate(kind, payload)
        return True
    except jsonschema.ValidationError:
        return False
