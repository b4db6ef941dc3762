"""
Tracker Field Schema Definitions

A tracker definition is a mapping from a stable field id to a ``FieldSchema``
node. Instance trees are keyed by each node's display ``name``; the id is what
survives renames, so two nodes sharing a name but not an id are distinct.

Usage:
    from scenetracker.schemas import load_schema, IncludeFilter

    schema = load_schema(preset["trackerDef"])
    for field_id, field in schema.items():
        print(field_id, field.name, field.type)

Raw definitions come from presets and user edits, so loading is lenient: an
unrecognized ``type`` falls back to STRING, an unrecognized ``presence`` falls
back to DYNAMIC, and a node that is not a mapping (or fails validation) is
logged and skipped while its siblings load normally.
"""
import json
import logging
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

logger = logging.getLogger(__name__)


class FieldType(str, Enum):
    STRING = "STRING"
    ARRAY = "ARRAY"
    OBJECT = "OBJECT"
    ARRAY_OBJECT = "ARRAY_OBJECT"
    FOR_EACH_OBJECT = "FOR_EACH_OBJECT"
    FOR_EACH_ARRAY = "FOR_EACH_ARRAY"


class FieldPresence(str, Enum):
    DYNAMIC = "DYNAMIC"
    EPHEMERAL = "EPHEMERAL"
    STATIC = "STATIC"


class IncludeFilter(str, Enum):
    """Which fields an operation looks at."""
    DYNAMIC = "dynamic"
    STATIC = "static"
    ALL = "all"


COMPOSITE_TYPES = frozenset({
    FieldType.OBJECT,
    FieldType.ARRAY_OBJECT,
    FieldType.FOR_EACH_OBJECT,
    FieldType.FOR_EACH_ARRAY,
})


class FieldMetadata(BaseModel):
    """Exposure flags for a field.

    ``internalOnly`` defaults to ``internal and not external`` unless the
    definition sets it explicitly.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    internal: bool = False
    external: bool = True
    internal_only: Optional[bool] = Field(default=None, alias="internalOnly")
    internal_key_id: Optional[str] = Field(default=None, alias="internalKeyId")

    @field_validator("internal", "external", mode="before")
    @classmethod
    def _coerce_flag(cls, value: Any, info) -> bool:
        if value is None:
            return info.field_name == "external"
        return bool(value)

    @field_validator("internal_key_id", mode="before")
    @classmethod
    def _coerce_key_id(cls, value: Any) -> Optional[str]:
        return value if isinstance(value, str) else None

    @model_validator(mode="after")
    def _derive_internal_only(self) -> "FieldMetadata":
        if self.internal_only is None:
            self.internal_only = self.internal and not self.external
        else:
            self.internal_only = bool(self.internal_only)
        return self


class FieldSchema(BaseModel):
    """One node of the tracker definition tree."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str = ""
    name: str = ""
    label: Optional[str] = None
    type: FieldType = FieldType.STRING
    presence: FieldPresence = FieldPresence.DYNAMIC
    prompt: str = ""
    default_value: str = Field(default="", alias="defaultValue")
    example_values: List[str] = Field(default_factory=list, alias="exampleValues")
    nested_fields: Dict[str, "FieldSchema"] = Field(default_factory=dict, alias="nestedFields")
    metadata: FieldMetadata = Field(default_factory=FieldMetadata)

    @model_validator(mode="before")
    @classmethod
    def _resolve_identity(cls, data: Any) -> Any:
        # Older definitions carry only `label` or only `id`
        if not isinstance(data, Mapping):
            return data
        data = dict(data)
        field_id = data.get("id")
        field_id = field_id.strip() if isinstance(field_id, str) else ""
        name = data.get("name")
        name = name.strip() if isinstance(name, str) else ""
        label = data.get("label")
        label = label.strip() if isinstance(label, str) else ""
        data["id"] = field_id or name or label
        data["name"] = name or label or field_id
        if data.get("metadata") is None:
            data.pop("metadata", None)
        return data

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value: Any) -> FieldType:
        if isinstance(value, FieldType):
            return value
        raw = value.strip().upper() if isinstance(value, str) else ""
        try:
            return FieldType(raw)
        except ValueError:
            logger.warning("Unknown field type %r, treating as STRING", value)
            return FieldType.STRING

    @field_validator("presence", mode="before")
    @classmethod
    def _coerce_presence(cls, value: Any) -> FieldPresence:
        if isinstance(value, FieldPresence):
            return value
        raw = value.strip().upper() if isinstance(value, str) else ""
        try:
            return FieldPresence(raw)
        except ValueError:
            return FieldPresence.DYNAMIC

    @field_validator("prompt", "default_value", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, str):
            return value
        if isinstance(value, (dict, list)):
            return json.dumps(value, ensure_ascii=False)
        return str(value)

    @field_validator("example_values", mode="before")
    @classmethod
    def _coerce_examples(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if not isinstance(value, (list, tuple)):
            value = [value]
        examples = []
        for item in value:
            if item is None:
                continue
            if isinstance(item, str):
                examples.append(item)
            else:
                examples.append(json.dumps(item, ensure_ascii=False))
        return examples

    @field_validator("metadata", mode="before")
    @classmethod
    def _coerce_metadata(cls, value: Any) -> Any:
        if isinstance(value, (Mapping, FieldMetadata)):
            return value
        return {}

    @field_validator("nested_fields", mode="before")
    @classmethod
    def _load_nested(cls, value: Any) -> Dict[str, "FieldSchema"]:
        if value is None:
            return {}
        return load_schema(value)

    @property
    def is_internal_only(self) -> bool:
        return bool(self.metadata.internal_only) or (
            self.metadata.internal and not self.metadata.external
        )

    @property
    def is_composite(self) -> bool:
        return self.type in COMPOSITE_TYPES


FieldSchema.model_rebuild()

# A tracker definition: field id -> node
TrackerSchema = Dict[str, FieldSchema]


def load_schema(raw: Any) -> TrackerSchema:
    """
    Build a tracker definition from a raw mapping.

    Args:
        raw: Mapping of field id -> field definition (dict or FieldSchema)

    Returns:
        Ordered dict of field id -> FieldSchema. Malformed nodes are skipped.
    """
    if not isinstance(raw, Mapping):
        logger.warning("Tracker definition is not a mapping (got %s), ignoring", type(raw).__name__)
        return {}

    schema: TrackerSchema = {}
    for field_id, node in raw.items():
        if isinstance(node, FieldSchema):
            schema[str(field_id)] = node
            continue
        if not isinstance(node, Mapping):
            logger.warning("Skipping malformed field definition %r (got %s)", field_id, type(node).__name__)
            continue

        node = dict(node)
        if not (isinstance(node.get("id"), str) and node["id"].strip()):
            node["id"] = str(field_id)
        try:
            schema[str(field_id)] = FieldSchema.model_validate(node)
        except ValidationError as exc:
            logger.warning("Skipping invalid field definition %r: %s", field_id, exc.errors())
    return schema


def ensure_schema(schema: Any) -> TrackerSchema:
    """Accept a loaded definition or a raw mapping and return a loaded one."""
    if isinstance(schema, Mapping) and all(isinstance(v, FieldSchema) for v in schema.values()):
        return dict(schema)
    return load_schema(schema)


def should_include(field: FieldSchema, include: IncludeFilter, include_ephemeral: bool = False) -> bool:
    """Whether ``field`` passes the include filter.

    EPHEMERAL fields only take part in DYNAMIC views while default scaffolding
    is being generated.
    """
    include = IncludeFilter(include)
    if include == IncludeFilter.ALL:
        return True
    if include == IncludeFilter.DYNAMIC:
        if field.presence == FieldPresence.DYNAMIC:
            return True
        return field.presence == FieldPresence.EPHEMERAL and include_ephemeral
    if include == IncludeFilter.STATIC:
        return field.presence == FieldPresence.STATIC
    return False
