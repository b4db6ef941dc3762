"""
Extra-field (quarantine) tree helpers.

Anything the engine receives but cannot place under the schema is kept in a
side tree stored under the ``_extraFields`` key of a tracker, at the same path
the value arrived on. These helpers merge, prune and describe that tree.
"""
import copy
import logging
from typing import Any, List, Mapping, Optional

logger = logging.getLogger(__name__)

EXTRA_FIELDS_KEY = "_extraFields"


def merge_extra_fields(base: Any, overlay: Any) -> Any:
    """
    Merge two extra-field trees, ``overlay`` taking precedence.

    - mapping + mapping: deep merge
    - string + string: ``overlay + base`` (equal strings are kept once)
    - anything else: ``overlay`` wins

    Neither input is mutated.
    """
    if overlay is None:
        return copy.deepcopy(base)
    if base is None:
        return copy.deepcopy(overlay)

    if isinstance(base, Mapping) and isinstance(overlay, Mapping):
        merged = copy.deepcopy(dict(base))
        for key, value in overlay.items():
            if key in merged:
                merged[key] = merge_extra_fields(merged[key], value)
            else:
                merged[key] = copy.deepcopy(value)
        return merged

    if isinstance(base, str) and isinstance(overlay, str):
        if base == overlay:
            return overlay
        return overlay + base

    return copy.deepcopy(overlay)


def prune_empty(value: Any) -> Any:
    """Recursively drop empty dict/list branches. Scalars (including None) are kept."""
    if isinstance(value, Mapping):
        pruned = {}
        for key, item in value.items():
            item = prune_empty(item)
            if isinstance(item, (dict, list)) and not item:
                continue
            pruned[key] = item
        return pruned
    if isinstance(value, list):
        pruned_list = []
        for item in value:
            item = prune_empty(item)
            if isinstance(item, (dict, list)) and not item:
                continue
            pruned_list.append(item)
        return pruned_list
    return value


def has_content(extra: Any) -> bool:
    """Whether a pruned extra tree is worth attaching to a tracker."""
    if extra is None:
        return False
    if isinstance(extra, (dict, list)):
        return len(extra) > 0
    return True


def flatten_extra_field_paths(extra: Any, prefix: Optional[List[str]] = None) -> List[str]:
    """Dotted paths of every leaf in an extra-field tree (``(root)`` for a bare scalar)."""
    prefix = prefix or []
    if extra is None:
        return []
    if not isinstance(extra, (Mapping, list)):
        return [".".join(prefix) if prefix else "(root)"]

    items = extra.items() if isinstance(extra, Mapping) else enumerate(extra)
    paths: List[str] = []
    for key, value in items:
        next_prefix = prefix + [str(key)]
        if isinstance(value, (Mapping, list)):
            nested = flatten_extra_field_paths(value, next_prefix)
            paths.extend(nested or [".".join(next_prefix)])
        else:
            paths.append(".".join(next_prefix))
    return paths


def log_unexpected_field_keys(tracker: Any, schema: Mapping, limit: int = 12) -> Optional[dict]:
    """
    Warn when a parsed model response carries keys the definition does not know.

    Args:
        tracker: Raw tracker dict as parsed from the model
        schema: Loaded tracker definition
        limit: Max number of quarantined paths to include in the log entry

    Returns:
        The logged payload, or None when nothing was unexpected.
    """
    if not isinstance(tracker, Mapping) or not isinstance(schema, Mapping):
        return None

    known_names = {getattr(field, "name", None) for field in schema.values()}
    unexpected = [key for key in tracker if key != EXTRA_FIELDS_KEY and key not in known_names]
    has_extra = EXTRA_FIELDS_KEY in tracker

    if not unexpected and not has_extra:
        return None

    payload: dict = {}
    if unexpected:
        payload["unexpected_keys"] = unexpected
    if has_extra:
        paths = sorted(flatten_extra_field_paths(tracker[EXTRA_FIELDS_KEY]))
        payload["extra_field_paths"] = paths[:limit]
        if len(paths) > limit:
            payload["extra_field_paths_truncated"] = True
            payload["total_extra_field_paths"] = len(paths)

    logger.warning(
        "Parsed tracker includes unrecognized field keys; they will be stored in %s",
        EXTRA_FIELDS_KEY,
        extra={"metadata": payload},
    )
    return payload
