# Tracker Schema Definitions
from .field_schema import (
    FieldType,
    FieldPresence,
    IncludeFilter,
    FieldMetadata,
    FieldSchema,
    TrackerSchema,
    COMPOSITE_TYPES,
    load_schema,
    ensure_schema,
    should_include,
)

# Built-in definition
from .default_schema import (
    DEFAULT_TRACKER_DEFINITION,
    get_default_schema,
)

__all__ = [
    "FieldType",
    "FieldPresence",
    "IncludeFilter",
    "FieldMetadata",
    "FieldSchema",
    "TrackerSchema",
    "COMPOSITE_TYPES",
    "load_schema",
    "ensure_schema",
    "should_include",
    "DEFAULT_TRACKER_DEFINITION",
    "get_default_schema",
]
