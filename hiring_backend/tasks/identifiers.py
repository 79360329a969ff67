"""Identifier helpers for analysis tasks.

Application and workspace ids are 24-character hex strings (document-store
object ids). Task ids embed the application id: `task_<applicationId>_<hex>`.
"""

from __future__ import annotations

from collections.abc import Mapping
import re
import secrets
from typing import Any

OBJECT_ID_PATTERN = re.compile(r"^[0-9a-fA-F]{24}$")
TASK_ID_PREFIX = "task"


def coerce_identifier(value: Any) -> str:
    """Reduce an id-like value to its plain string form.

    Strings pass through. Mappings carrying an `_id` (a populated document)
    collapse to that id. Any other object is converted with `str()`.
    """
    if value is None:
        raise ValueError("identifier is required")
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, Mapping):
        inner = value.get("_id", value.get("id"))
        if inner is None:
            raise ValueError(f"cannot derive an identifier from {value!r}")
        return coerce_identifier(inner)
    return str(value)


def is_valid_object_id(value: Any) -> bool:
    return isinstance(value, str) and bool(OBJECT_ID_PATTERN.match(value))


def generate_task_id(application_id: str) -> str:
    return f"{TASK_ID_PREFIX}_{application_id}_{secrets.token_hex(8)}"


def application_id_from_task_id(task_id: str) -> str | None:
    """Recover the application id embedded in a task id, if it is well formed."""
    parts = task_id.split("_")
    if len(parts) >= 3 and parts[0] == TASK_ID_PREFIX and is_valid_object_id(parts[1]):
        return parts[1]
    return None
