# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Storage sanitization for audit snapshots.

Inlined photos make a verification response hundreds of kilobytes. Before
a snapshot is persisted, every binary-asset field is replaced with a
fixed marker naming the field:

* any string value starting with ``data:`` (embedded data URL), and
* any non-empty value under a key named ``photo``, ``image``,
  ``picture``, ``avatar`` or ``signature`` (case-insensitive).

The walk recurses through nested dicts and lists and never mutates its
input.
"""

import logging
from typing import Any, List, Tuple

log = logging.getLogger(__name__)

EMBEDDED_DATA_PREFIX = "data:"
ASSET_FIELD_NAMES = frozenset({"photo", "image", "picture", "avatar", "signature"})


def redaction_marker(field_name: str) -> str:
    return f"[{field_name.upper()}_DATA_REMOVED_FOR_STORAGE]"


def _is_asset_value(key: str, value: Any) -> bool:
    if isinstance(value, str) and value.startswith(EMBEDDED_DATA_PREFIX):
        return True
    return key.lower() in ASSET_FIELD_NAMES and value not in (None, "")


def _walk(value: Any, path: str, removed: List[str]) -> Any:
    if isinstance(value, dict):
        clean = {}
        for key, item in value.items():
            key_str = str(key)
            child_path = f"{path}.{key_str}" if path else key_str
            if _is_asset_value(key_str, item):
                clean[key] = redaction_marker(key_str)
                removed.append(child_path)
            else:
                clean[key] = _walk(item, child_path, removed)
        return clean
    if isinstance(value, (list, tuple)):
        items = []
        for index, item in enumerate(value):
            child_path = f"{path}[{index}]"
            if isinstance(item, str) and item.startswith(EMBEDDED_DATA_PREFIX):
                items.append(redaction_marker("embedded"))
                removed.append(child_path)
            else:
                items.append(_walk(item, child_path, removed))
        return items
    return value


def sanitize_with_report(data: Any) -> Tuple[Any, List[str]]:
    """Return a sanitized copy of *data* and the dotted paths that were redacted."""
    removed: List[str] = []
    clean = _walk(data, "", removed)
    return clean, removed


def sanitize_for_storage(data: Any) -> Any:
    """Return a copy of *data* safe to persist in the audit log."""
    clean, removed = sanitize_with_report(data)
    if removed:
        log.info(f"Snapshot sanitized for storage - removed fields: {', '.join(removed)}")
    return clean
