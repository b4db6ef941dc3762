"""
Tracker Reconciliation Engine

Schema-driven operations over tracker trees:

- default_tree          all-default tracker (seeding, prompt scaffolding)
- normalize             shape an untrusted tree to the definition
- apply_update          merge an incoming tree over a previous one
- exists                is the tracker meaningfully non-empty?
- clean                 drop values equal to their defaults
- strip_internal_only   remove fields never shown to the model or user
- prompt_text           instruction lines describing the definition

Every function takes a loaded definition (or a raw mapping, which is loaded)
and trees or tracker text, and never mutates its inputs. Nothing is silently
dropped: values that do not fit are kept under ``_extraFields`` at the path
they arrived on. Only tracker text that fails to decode raises
(``TrackerDecodeError``), before any walk starts.

Usage:
    from scenetracker.utils.tracker_engine import normalize, apply_update

    tracker = normalize(schema, model_output, IncludeFilter.ALL)
    update = apply_update(schema, previous, tracker)
    store(update.merged, update.internal)
"""
import copy
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional

from scenetracker.schemas.field_schema import (
    FieldSchema,
    FieldType,
    IncludeFilter,
    ensure_schema,
    should_include,
)
from scenetracker.utils.extra_fields import (
    EXTRA_FIELDS_KEY,
    has_content,
    merge_extra_fields,
    prune_empty,
)
from scenetracker.utils.field_handlers import MISSING, get_handler, is_missing
from scenetracker.utils.story_events import log_story_events
from scenetracker.utils.tracker_codec import decode_tracker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrackerUpdate:
    """Result of ``apply_update``. ``internal`` is None when there is no internal payload."""
    merged: dict
    internal: Optional[dict] = None


def _as_tree(value: Any) -> Any:
    """Decode tracker text; copy trees so callers' objects are never shared."""
    if isinstance(value, (str, bytes)):
        return decode_tracker(value)
    return copy.deepcopy(value)


# ---------------------------------------------------------------------------
# Defaults / normalize / update
# ---------------------------------------------------------------------------

def _clean_seeds(seeds: Optional[Iterable[str]]) -> List[str]:
    names: List[str] = []
    for name in seeds or ():
        if isinstance(name, str) and name.strip() and name.strip() not in names:
            names.append(name.strip())
    return names


def default_tree(schema: Any, include: IncludeFilter = IncludeFilter.DYNAMIC,
                 example_index: Optional[int] = None,
                 participant_seeds: Optional[Iterable[str]] = None) -> dict:
    """
    Build an all-default tracker.

    Args:
        schema: Tracker definition
        include: Which fields to produce
        example_index: When set, values come from ``exampleValues[example_index]``
            instead of defaults (few-shot prompt scaffolding)
        participant_seeds: Names that replace the placeholder entity keys of
            top-level FOR_EACH fields (ignored for example trees)
    """
    schema = ensure_schema(schema)
    include = IncludeFilter(include)
    seeds = _clean_seeds(participant_seeds) if example_index is None else []

    tree = {}
    for field in schema.values():
        if not should_include(field, include, include_ephemeral=True):
            continue
        handler = get_handler(field)
        if seeds and field.type in (FieldType.FOR_EACH_OBJECT, FieldType.FOR_EACH_ARRAY):
            tree[field.name] = handler.default(field, include, example_index, entity_keys=seeds)
        else:
            tree[field.name] = handler.default(field, include, example_index)
    return tree


def normalize(schema: Any, raw: Any, include: IncludeFilter = IncludeFilter.DYNAMIC,
              include_extra: bool = True) -> dict:
    """
    Reconcile an untrusted tree against the definition.

    The result's keys are the definition's field names (filtered by
    ``include``) plus ``_extraFields`` when ``include_extra`` is set and
    something was quarantined.
    """
    schema = ensure_schema(schema)
    include = IncludeFilter(include)
    raw = _as_tree(raw)

    source: Mapping = raw if isinstance(raw, Mapping) else {}
    extra: dict = {}
    result = {}

    for field in schema.values():
        if not should_include(field, include):
            continue
        result[field.name] = get_handler(field).reconcile(
            field, include, source.get(field.name, MISSING), extra)

    # Excluded fields are still known, so they are not extras
    known = {field.name for field in schema.values()}
    for key, value in source.items():
        if key == EXTRA_FIELDS_KEY or key in known:
            continue
        extra[key] = value

    if include_extra:
        combined = merge_extra_fields(extra, source.get(EXTRA_FIELDS_KEY))
        if not isinstance(raw, Mapping) and not is_missing(raw):
            combined = merge_extra_fields(combined, raw)
        _attach_extra(result, combined)
    return result


def apply_update(schema: Any, previous: Any, incoming: Any, include_extra: bool = True,
                 use_incoming_extra_fields: bool = False) -> TrackerUpdate:
    """
    Merge ``incoming`` over ``previous``, field by field.

    Args:
        schema: Tracker definition
        previous: Current tracker (tree or text)
        incoming: New tracker (tree or text), usually model output or an edit
        include_extra: Attach the ``_extraFields`` side channel to the result
        use_incoming_extra_fields: Take ``_extraFields`` from ``incoming`` only,
            so extras removed in an editor stay removed

    Returns:
        TrackerUpdate with internal-only fields moved from ``merged`` to ``internal``.
    """
    schema = ensure_schema(schema)
    previous = _as_tree(previous)
    incoming = _as_tree(incoming)
    previous_map: Mapping = previous if isinstance(previous, Mapping) else {}
    incoming_map: Mapping = incoming if isinstance(incoming, Mapping) else {}

    extra: dict = {}
    merged = {}
    for field in schema.values():
        merged[field.name] = get_handler(field).merge(
            field,
            previous_map.get(field.name, MISSING),
            incoming_map.get(field.name, MISSING),
            extra,
        )

    known = {field.name for field in schema.values()}
    for key, value in incoming_map.items():
        if key != EXTRA_FIELDS_KEY and key not in known:
            extra[key] = value
    for key, value in previous_map.items():
        if key != EXTRA_FIELDS_KEY and key not in known and key not in extra:
            extra[key] = value

    if include_extra:
        if use_incoming_extra_fields:
            combined = incoming_map.get(EXTRA_FIELDS_KEY)
        else:
            side_channel = merge_extra_fields(
                previous_map.get(EXTRA_FIELDS_KEY), incoming_map.get(EXTRA_FIELDS_KEY))
            combined = merge_extra_fields(extra, side_channel)
            for side in (previous, incoming):
                if not isinstance(side, Mapping) and not is_missing(side):
                    combined = merge_extra_fields(combined, side)
        _attach_extra(merged, combined)

    log_story_events(merged)

    internal: dict = {}
    _partition_internal(schema, merged, incoming_map, internal)
    internal = prune_empty(internal)
    return TrackerUpdate(merged=merged, internal=internal or None)


def _attach_extra(tree: dict, extra: Any) -> None:
    extra = prune_empty(extra)
    if has_content(extra):
        tree[EXTRA_FIELDS_KEY] = extra


# ---------------------------------------------------------------------------
# Internal-only fields
# ---------------------------------------------------------------------------

def _extract_internal(fields: Mapping, node: Any, source: Any, collector: Optional[dict],
                      extras: Any = None) -> None:
    """
    Remove internal-only fields from ``node`` in place.

    ``extras`` is the ``_extraFields`` branch at the same path as ``node``;
    anything quarantined under an internal-only field is removed from it too.
    With a ``collector``, each removed value is recorded there, preferring the
    value found at the same path in ``source``, then the merged value, then
    the quarantined one. Nulls are never recorded.
    """
    if not isinstance(node, dict):
        return
    source = source if isinstance(source, Mapping) else {}
    extras = extras if isinstance(extras, dict) else {}

    for field in fields.values():
        if field.is_internal_only:
            quarantined = extras.pop(field.name, MISSING)
            if field.name not in node and quarantined is MISSING:
                continue
            if collector is not None:
                value = source.get(field.name, MISSING)
                if value is MISSING and not _is_blank(node.get(field.name)):
                    value = node[field.name]
                if value is MISSING or value is None:
                    value = quarantined
                if value is not MISSING and value is not None:
                    collector[field.name] = copy.deepcopy(value)
            node.pop(field.name, None)
            continue

        if field.name not in node or not field.nested_fields:
            continue

        value = node[field.name]
        nested_source = source.get(field.name)
        nested_extras = extras.get(field.name)
        nested_collector = {} if collector is not None else None

        if field.type in (FieldType.OBJECT, FieldType.ARRAY_OBJECT):
            _extract_internal(field.nested_fields, value, nested_source, nested_collector, nested_extras)

        elif field.type == FieldType.FOR_EACH_OBJECT and isinstance(value, dict):
            entity_sources = nested_source if isinstance(nested_source, Mapping) else {}
            entity_extras = nested_extras if isinstance(nested_extras, dict) else {}
            for key, entity in value.items():
                entity_collector = {} if collector is not None else None
                _extract_internal(field.nested_fields, entity, entity_sources.get(key), entity_collector,
                                  entity_extras.get(key))
                if entity_collector:
                    nested_collector[key] = entity_collector

        elif field.type == FieldType.FOR_EACH_ARRAY and isinstance(value, dict):
            entity_sources = nested_source if isinstance(nested_source, Mapping) else {}
            for key, items in value.items():
                if not isinstance(items, list):
                    continue
                item_sources = entity_sources.get(key)
                item_sources = item_sources if isinstance(item_sources, list) else []
                collected_items = []
                for index, item in enumerate(items):
                    item_collector = {} if collector is not None else None
                    item_source = item_sources[index] if index < len(item_sources) else None
                    _extract_internal(field.nested_fields, item, item_source, item_collector)
                    if item_collector:
                        collected_items.append(item_collector)
                if collected_items:
                    nested_collector[key] = collected_items

        if nested_collector:
            collector[field.name] = nested_collector


def _partition_internal(schema: Mapping, tree: dict, source: Any, collector: Optional[dict]) -> None:
    """Strip internal-only fields from ``tree`` and from its ``_extraFields``."""
    _extract_internal(schema, tree, source, collector, tree.get(EXTRA_FIELDS_KEY))
    if EXTRA_FIELDS_KEY in tree:
        remaining = prune_empty(tree.pop(EXTRA_FIELDS_KEY))
        if has_content(remaining):
            tree[EXTRA_FIELDS_KEY] = remaining


def strip_internal_only(schema: Any, instance: Any) -> Any:
    """Copy of ``instance`` without internal-only fields, at any depth."""
    schema = ensure_schema(schema)
    tree = _as_tree(instance)
    if not isinstance(tree, dict):
        return tree
    _partition_internal(schema, tree, None, None)
    return tree


# ---------------------------------------------------------------------------
# Existence / cleaning
# ---------------------------------------------------------------------------

def _drop_empty(value: Any) -> Any:
    """Recursively drop "", None, [] and {} entries."""
    if isinstance(value, Mapping):
        kept = {}
        for key, item in value.items():
            item = _drop_empty(item)
            if item is None or item == "" or (isinstance(item, (dict, list)) and not item):
                continue
            kept[key] = item
        return kept
    if isinstance(value, list):
        kept_items = []
        for item in value:
            item = _drop_empty(item)
            if item is None or item == "" or (isinstance(item, (dict, list)) and not item):
                continue
            kept_items.append(item)
        return kept_items
    return value


def _is_blank(value: Any) -> bool:
    return not _drop_empty({"value": value})


def exists(schema: Any, instance: Any) -> bool:
    """
    Whether ``instance`` holds anything beyond the default tracker.

    Empty values are ignored on both sides, so ``{}`` and an untouched
    default tree both count as absent.
    """
    if instance is None:
        return False
    tree = _drop_empty(_as_tree(instance))
    if not tree:
        return False
    return tree != _drop_empty(default_tree(schema, IncludeFilter.ALL))


def _empty_equivalent(value: Any) -> Any:
    if isinstance(value, str):
        return ""
    if isinstance(value, list):
        return []
    if isinstance(value, dict):
        return {}
    return None


def _remove_defaults(value: Any, default: Any, preserve_structure: bool) -> Any:
    """Returns MISSING when the whole value is a default."""
    if isinstance(value, list) and isinstance(default, list):
        kept = [item for item in value if item not in default]
        if not kept and not preserve_structure:
            return MISSING
        return kept

    if isinstance(value, dict) and isinstance(default, dict):
        result = {}
        for key, item in value.items():
            item_default = default[key] if key in default else _empty_equivalent(item)
            cleaned = _remove_defaults(item, item_default, preserve_structure)
            if cleaned is not MISSING:
                result[key] = cleaned
            elif preserve_structure:
                result[key] = _empty_equivalent(item)
        if not result and not preserve_structure:
            return MISSING
        return result

    if value == default:
        return _empty_equivalent(value) if preserve_structure else MISSING
    return value


def clean(schema: Any, instance: Any, preserve_structure: bool = False) -> dict:
    """
    Drop every value equal to its default.

    With ``preserve_structure`` removed values become ``""``/``[]``/``{}``
    so keys stay in place; otherwise emptied sub-trees disappear entirely.
    """
    tree = _as_tree(instance)
    cleaned = _remove_defaults(tree, default_tree(schema, IncludeFilter.ALL), preserve_structure)
    if cleaned is MISSING or cleaned is None:
        return {}
    return cleaned


# ---------------------------------------------------------------------------
# Prompt text
# ---------------------------------------------------------------------------

_WHITESPACE_RE = re.compile(r"\s+")


def _stringify_example(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, list):
        return "; ".join(text for text in (_stringify_example(item) for item in value) if text)
    if isinstance(value, dict):
        return "; ".join(f"{key}: {_stringify_example(item)}" for key, item in value.items())
    return str(value)


def format_example_value(example: Any) -> str:
    """One-line rendering of an example value for prompt text."""
    if example is None:
        return ""
    if isinstance(example, str):
        trimmed = example.strip()
        if not trimmed:
            return ""
        try:
            example = json.loads(trimmed)
        except ValueError:
            return _WHITESPACE_RE.sub(" ", trimmed)
    return _WHITESPACE_RE.sub(" ", _stringify_example(example)).strip()


def _append_example_lines(field: FieldSchema, indent_level: int, lines: List[str]) -> None:
    indent = "  " * (indent_level + 1)
    multiple = len(field.example_values) > 1
    for index, example in enumerate(field.example_values):
        formatted = format_example_value(example)
        if not formatted:
            continue
        label = f"Example {index + 1}" if multiple else "Example"
        lines.append(f"{indent}- {label}: {formatted}")


def _build_prompt_lines(fields: Mapping, include: IncludeFilter, indent_level: int, lines: List[str]) -> None:
    indent = "  " * indent_level
    for field in fields.values():
        if not should_include(field, include, include_ephemeral=True):
            continue
        if not field.prompt and not field.nested_fields and not field.example_values:
            continue

        line = f"{indent}- **{field.name}:**"
        if field.prompt:
            line += f" {field.prompt}"
        lines.append(line)
        _append_example_lines(field, indent_level, lines)
        if field.nested_fields:
            _build_prompt_lines(field.nested_fields, include, indent_level + 1, lines)


def prompt_text(schema: Any, include: IncludeFilter = IncludeFilter.DYNAMIC) -> List[str]:
    """Instruction lines (name, prompt, examples) for every included field, in order."""
    schema = ensure_schema(schema)
    lines: List[str] = []
    _build_prompt_lines(schema, IncludeFilter(include), 0, lines)
    return lines


def tracker_prompt(schema: Any, include: IncludeFilter = IncludeFilter.DYNAMIC) -> str:
    return "\n".join(prompt_text(schema, include))


__all__ = [
    "TrackerUpdate",
    "default_tree",
    "normalize",
    "apply_update",
    "exists",
    "clean",
    "strip_internal_only",
    "format_example_value",
    "prompt_text",
    "tracker_prompt",
]
