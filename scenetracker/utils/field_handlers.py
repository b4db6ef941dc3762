"""
Tracker Field Type Handlers

One stateless handler per field kind. Every handler implements the same three
operations:

- ``default``   build scaffolding values for a new tracker or a prompt example
- ``reconcile`` shape an untrusted value to the declared type
- ``merge``     combine a previous and an incoming value, incoming first

Values that do not fit are never dropped. They are written into the ``extra``
sink passed down by the caller, keyed by the field's name, so the engine can
expose them under ``_extraFields`` at the path they arrived on.

Usage:
    from scenetracker.utils.field_handlers import get_handler, MISSING

    handler = get_handler(field)
    extra = {}
    value = handler.reconcile(field, IncludeFilter.ALL, raw.get(field.name, MISSING), extra)
"""
import copy
import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from scenetracker.schemas.field_schema import (
    FieldSchema,
    FieldType,
    IncludeFilter,
    should_include,
)
from scenetracker.utils.extra_fields import merge_extra_fields

logger = logging.getLogger(__name__)

PLACEHOLDER_TEXT = "Updated if Changed"
DEFAULT_ENTITY_KEY = "default"


class _Missing:
    """Marks a key that is absent from its parent mapping."""

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------

def is_missing(value: Any) -> bool:
    """Absent keys and explicit nulls both reconcile to the empty value."""
    return value is MISSING or value is None


def is_empty_sentinel(value: Any) -> bool:
    """``"none"`` (any case) or a blank string stands for an empty collection."""
    if not isinstance(value, str):
        return False
    normalized = value.strip()
    return not normalized or normalized.lower() == "none"


def text_of(value: Any) -> Optional[str]:
    """Textual form of a scalar, or None when ``value`` is not a scalar."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return None


def parse_example(raw: str) -> Tuple[Any, bool]:
    """Example and default values are usually JSON-encoded. Returns (value, parsed_ok)."""
    try:
        return json.loads(raw), True
    except (TypeError, ValueError):
        return raw, False


def quarantine(extra: Optional[dict], key: str, value: Any) -> None:
    """Store ``value`` under ``extra[key]``, merging with whatever is already there."""
    if extra is None:
        return
    extra[key] = merge_extra_fields(extra.get(key), copy.deepcopy(value))


def _example_at(field: FieldSchema, example_index: Optional[int]) -> Optional[str]:
    if example_index is None:
        return None
    if 0 <= example_index < len(field.example_values) and field.example_values[example_index]:
        return field.example_values[example_index]
    return None


def is_single_string_list(field: FieldSchema) -> bool:
    """FOR_EACH_ARRAY whose items are plain strings rather than sub-trees."""
    nested = list(field.nested_fields.values())
    return len(nested) == 1 and nested[0].type == FieldType.STRING


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

class FieldHandler:
    """Base contract for a field kind."""

    def default(self, field: FieldSchema, include: IncludeFilter,
                example_index: Optional[int] = None, char_index: Optional[int] = None) -> Any:
        raise NotImplementedError

    def reconcile(self, field: FieldSchema, include: IncludeFilter, value: Any, extra: Optional[dict]) -> Any:
        raise NotImplementedError

    def merge(self, field: FieldSchema, previous: Any, incoming: Any, extra: Optional[dict]) -> Any:
        # Leaf merge: incoming wins when present and well-shaped. An explicit
        # null is present and resets the value.
        previous_sink: dict = {}
        previous_value = self.reconcile(field, IncludeFilter.ALL, previous, previous_sink)

        incoming_sink: dict = {}
        incoming_value = None
        if incoming is not MISSING:
            incoming_value = self.reconcile(field, IncludeFilter.ALL, incoming, incoming_sink)

        for sink in (previous_sink, incoming_sink):
            for key, value in sink.items():
                quarantine(extra, key, value)

        if incoming is not MISSING and field.name not in incoming_sink:
            return incoming_value
        return previous_value


class StringHandler(FieldHandler):

    def default(self, field, include, example_index=None, char_index=None):
        raw = _example_at(field, example_index)
        if raw is None:
            return field.default_value or PLACEHOLDER_TEXT

        parsed, ok = parse_example(raw)
        if not ok:
            return raw
        if isinstance(parsed, list):
            if not parsed:
                return field.default_value or PLACEHOLDER_TEXT
            item = parsed[char_index] if char_index is not None and char_index < len(parsed) else parsed[0]
            text = text_of(item)
            return text if text is not None else json.dumps(item, ensure_ascii=False)
        text = text_of(parsed)
        return text if text is not None else raw

    def reconcile(self, field, include, value, extra):
        if is_missing(value):
            return ""
        text = text_of(value)
        if text is not None:
            return text
        quarantine(extra, field.name, value)
        return ""


class ArrayHandler(FieldHandler):

    def default(self, field, include, example_index=None, char_index=None):
        raw = _example_at(field, example_index)
        if raw is not None:
            parsed, ok = parse_example(raw)
            if ok and isinstance(parsed, list):
                if char_index is not None and char_index < len(parsed) and isinstance(parsed[char_index], list):
                    return list(parsed[char_index])
                return parsed
            return [parsed]

        if not field.default_value:
            return []
        parsed, ok = parse_example(field.default_value)
        if ok:
            return parsed if isinstance(parsed, list) else [parsed]
        return [field.default_value]

    def reconcile(self, field, include, value, extra):
        if is_missing(value):
            return []
        if isinstance(value, list):
            return list(value)
        # Order and element identity cannot be inferred from a scalar
        quarantine(extra, field.name, value)
        return []


class ObjectHandler(FieldHandler):
    """OBJECT and ARRAY_OBJECT: a fixed sub-tree of nested fields."""

    def default(self, field, include, example_index=None, char_index=None):
        return default_entity(field, include, example_index, char_index)

    def reconcile(self, field, include, value, extra):
        # Missing and mismatched values still get the full sub-tree so a
        # second pass changes nothing
        result, leftover = reconcile_entity(field, include, value)
        if leftover is not None:
            quarantine(extra, field.name, leftover)
        return result

    def merge(self, field, previous, incoming, extra):
        result, leftover = merge_entity(field, previous, incoming)
        if leftover is not None:
            quarantine(extra, field.name, leftover)
        return result


class ForEachObjectHandler(FieldHandler):
    """Entity key (e.g. a character name) -> sub-tree of nested fields."""

    def default(self, field, include, example_index=None, char_index=None, entity_keys=None):
        result = {}
        for c_index, key in enumerate(entity_keys or resolve_for_each_keys(field, example_index)):
            result[key] = default_entity(field, include, example_index, c_index)
        return result

    def reconcile(self, field, include, value, extra):
        if is_missing(value) or is_empty_sentinel(value):
            return {}
        if not isinstance(value, Mapping):
            quarantine(extra, field.name, value)
            return {}

        result = {}
        entity_extras = {}
        for key, entity in value.items():
            result[key], leftover = reconcile_entity(field, include, entity)
            if leftover is not None:
                entity_extras[key] = leftover
        if entity_extras:
            quarantine(extra, field.name, entity_extras)
        return result

    def merge(self, field, previous, incoming, extra):
        if incoming is None or is_empty_sentinel(incoming):
            return {}

        previous_map, incoming_map = _split_collection_sides(field, previous, incoming, extra)
        if previous_map is None and incoming_map is None:
            return {}
        previous_map = previous_map or {}
        incoming_map = incoming_map or {}

        result = {}
        entity_extras = {}
        for key in _union_keys(incoming_map, previous_map):
            result[key], leftover = merge_entity(
                field,
                previous_map.get(key, MISSING),
                incoming_map.get(key, MISSING),
            )
            if leftover is not None:
                entity_extras[key] = leftover
        if entity_extras:
            quarantine(extra, field.name, entity_extras)
        return result


class ForEachArrayHandler(FieldHandler):
    """Entity key -> ordered list of strings (single STRING nested field) or sub-trees."""

    def default(self, field, include, example_index=None, char_index=None, entity_keys=None):
        nested = list(field.nested_fields.values())
        single = is_single_string_list(field)
        result = {}
        for c_index, key in enumerate(entity_keys or resolve_for_each_keys(field, example_index)):
            if single:
                result[key] = _default_string_list(nested[0], example_index)
            else:
                result[key] = [default_entity(field, include, example_index, c_index)]
        return result

    def reconcile(self, field, include, value, extra):
        if is_missing(value) or is_empty_sentinel(value):
            return {}
        if not isinstance(value, Mapping):
            quarantine(extra, field.name, value)
            return {}

        result = {}
        entity_extras = {}
        for key, items in value.items():
            items_value, leftover = reconcile_entity_list(field, include, items)
            result[key] = items_value if items_value is not None else []
            if leftover is not None:
                entity_extras[key] = leftover
        if entity_extras:
            quarantine(extra, field.name, entity_extras)
        return result

    def merge(self, field, previous, incoming, extra):
        if incoming is None or is_empty_sentinel(incoming):
            return {}

        previous_map, incoming_map = _split_collection_sides(field, previous, incoming, extra)
        if previous_map is None and incoming_map is None:
            return {}
        previous_map = previous_map or {}
        incoming_map = incoming_map or {}

        result = {}
        entity_extras = {}
        for key in _union_keys(incoming_map, previous_map):
            # Lists are replaced per entity; element identity is not tracked
            previous_items, previous_left = reconcile_entity_list(
                field, IncludeFilter.ALL, previous_map.get(key, MISSING))
            leftover = previous_left
            chosen = previous_items

            incoming_items = incoming_map.get(key, MISSING)
            if incoming_items is not MISSING:
                incoming_list, incoming_left = reconcile_entity_list(field, IncludeFilter.ALL, incoming_items)
                if incoming_left is not None:
                    leftover = merge_extra_fields(leftover, incoming_left)
                if incoming_list is not None:
                    chosen = incoming_list

            result[key] = chosen if chosen is not None else []
            if leftover is not None:
                entity_extras[key] = leftover
        if entity_extras:
            quarantine(extra, field.name, entity_extras)
        return result


# ---------------------------------------------------------------------------
# Shared composite walks
# ---------------------------------------------------------------------------

def default_entity(field: FieldSchema, include: IncludeFilter,
                   example_index: Optional[int] = None, char_index: Optional[int] = None) -> dict:
    obj = {}
    for nested in field.nested_fields.values():
        if not should_include(nested, include, include_ephemeral=True):
            continue
        obj[nested.name] = get_handler(nested).default(nested, include, example_index, char_index)
    return obj


def reconcile_entity(field: FieldSchema, include: IncludeFilter, value: Any) -> Tuple[dict, Any]:
    """
    Reconcile one sub-tree against ``field.nested_fields``.

    Returns ``(sub_tree, leftover)`` where ``leftover`` is everything that could
    not be placed (None when nothing was left over). A non-mapping value is
    left over whole and the sub-tree is built from nothing.
    """
    leftover = None
    source: Mapping = {}
    if isinstance(value, Mapping):
        source = value
    elif not is_missing(value):
        leftover = value

    obj = {}
    nested_extra: dict = {}
    for nested in field.nested_fields.values():
        if not should_include(nested, include):
            continue
        obj[nested.name] = get_handler(nested).reconcile(
            nested, include, source.get(nested.name, MISSING), nested_extra)

    # Fields filtered out above are still known, so they are not extras
    known = {nested.name for nested in field.nested_fields.values()}
    for key, item in source.items():
        if key not in known:
            nested_extra[key] = copy.deepcopy(item)

    if nested_extra:
        leftover = merge_extra_fields(nested_extra, leftover)
    return obj, leftover


def merge_entity(field: FieldSchema, previous: Any, incoming: Any) -> Tuple[dict, Any]:
    """
    Field-by-field merge of two sub-trees. Returns ``(sub_tree, leftover)``.

    An incoming null resets the sub-tree to its empty shape. Whatever the
    previous side held that does not fit is still returned as leftover.
    """
    if incoming is None:
        _, leftover = reconcile_entity(field, IncludeFilter.ALL, previous)
        obj, _ = reconcile_entity(field, IncludeFilter.ALL, MISSING)
        return obj, leftover

    previous_map = previous if isinstance(previous, Mapping) else {}
    incoming_map = incoming if isinstance(incoming, Mapping) else {}

    obj = {}
    nested_extra: dict = {}
    for nested in field.nested_fields.values():
        obj[nested.name] = get_handler(nested).merge(
            nested,
            previous_map.get(nested.name, MISSING),
            incoming_map.get(nested.name, MISSING),
            nested_extra,
        )

    known = {nested.name for nested in field.nested_fields.values()}
    for key, item in incoming_map.items():
        if key not in known:
            nested_extra[key] = copy.deepcopy(item)
    for key, item in previous_map.items():
        if key not in known and key not in nested_extra:
            nested_extra[key] = copy.deepcopy(item)

    leftover = nested_extra or None
    for side in (previous, incoming):
        if not is_missing(side) and not isinstance(side, Mapping):
            leftover = merge_extra_fields(leftover, side)
    return obj, leftover


def reconcile_entity_list(field: FieldSchema, include: IncludeFilter, items: Any) -> Tuple[Optional[list], Any]:
    """
    Reconcile one FOR_EACH_ARRAY entry.

    Returns ``(items, leftover)``; ``items`` is None when the entry is absent
    or not a list at all (the whole entry is then the leftover). A null entry
    is an empty list.
    """
    if items is MISSING:
        return None, None
    if items is None:
        return [], None
    if not isinstance(items, list):
        return None, copy.deepcopy(items)

    values = []
    rejected = []
    if is_single_string_list(field):
        for item in items:
            text = text_of(item)
            if text is not None:
                values.append(text)
            else:
                rejected.append(copy.deepcopy(item))
    else:
        for item in items:
            if isinstance(item, Mapping):
                obj, leftover = reconcile_entity(field, include, item)
                values.append(obj)
                if leftover is not None:
                    rejected.append(leftover)
            else:
                rejected.append(copy.deepcopy(item))
    return values, (rejected or None)


def resolve_for_each_keys(field: FieldSchema, example_index: Optional[int] = None) -> List[str]:
    """Placeholder entity keys for default scaffolding."""
    raw = _example_at(field, example_index)
    if raw is not None:
        parsed, ok = parse_example(raw)
        if ok and isinstance(parsed, list):
            keys = [text_of(item) or json.dumps(item) for item in parsed if item is not None]
            if keys:
                return keys
        elif ok and isinstance(parsed, str):
            return [parsed]
        return [raw]
    return [field.default_value or DEFAULT_ENTITY_KEY]


def _default_string_list(nested: FieldSchema, example_index: Optional[int]) -> List[str]:
    raw = _example_at(nested, example_index)
    if raw is None:
        raw = nested.default_value or None
    if raw is None:
        return [PLACEHOLDER_TEXT]

    parsed, ok = parse_example(raw)
    if ok and isinstance(parsed, list):
        return [text_of(item) or json.dumps(item) for item in parsed]
    if ok:
        text = text_of(parsed)
        return [text if text is not None else raw]
    return [raw]


def _split_collection_sides(field: FieldSchema, previous: Any, incoming: Any,
                            extra: Optional[dict]) -> Tuple[Optional[Mapping], Optional[Mapping]]:
    """Mapping view of each side of a FOR_EACH merge; malformed sides are quarantined."""
    sides = []
    for side in (previous, incoming):
        if isinstance(side, Mapping):
            sides.append(side)
            continue
        if not is_missing(side) and not is_empty_sentinel(side):
            quarantine(extra, field.name, side)
        sides.append(None)
    return sides[0], sides[1]


def _union_keys(primary: Mapping, secondary: Mapping) -> List[str]:
    keys = list(primary.keys())
    keys.extend(key for key in secondary.keys() if key not in primary)
    return keys


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

_STRING_HANDLER = StringHandler()

FIELD_HANDLERS: Dict[FieldType, FieldHandler] = {
    FieldType.STRING: _STRING_HANDLER,
    FieldType.ARRAY: ArrayHandler(),
    FieldType.OBJECT: ObjectHandler(),
    FieldType.ARRAY_OBJECT: ObjectHandler(),
    FieldType.FOR_EACH_OBJECT: ForEachObjectHandler(),
    FieldType.FOR_EACH_ARRAY: ForEachArrayHandler(),
}


def get_handler(field: FieldSchema) -> FieldHandler:
    """Handler for ``field.type``; STRING when the type is not recognized."""
    handler = FIELD_HANDLERS.get(field.type)
    if handler is None:
        logger.warning("No handler for field type %r on %r, using STRING", field.type, field.name)
        return _STRING_HANDLER
    return handler
