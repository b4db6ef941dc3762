"""
Tracker Definition Auditor

Walks a raw tracker definition (the field schema, not a tracker instance),
flags anything that does not have the canonical shape, and proposes a
normalized copy. The engine assumes it is given audited definitions; presets
that come back ``is_legacy`` are quarantined under a generated name rather
than loaded.

Usage:
    from scenetracker.utils.schema_auditor import audit_schema

    audit = audit_schema(preset["trackerDef"])
    if audit.is_legacy:
        ...
    elif audit.changed:
        preset["trackerDef"] = audit.normalized

Two severities:
    legacy   the definition cannot be used as-is
    changed  only a harmless normalization was applied
"""
import copy
import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional

from pydantic import BaseModel, Field

from scenetracker.schemas.default_schema import DEFAULT_TRACKER_DEFINITION
from scenetracker.schemas.field_schema import FieldPresence, FieldType

logger = logging.getLogger(__name__)

LEGACY_PRESET_PREFIX = "❌ Legacy"
DEFAULT_ROOT_PATH = "trackerDef"


class AuditReasonCode(str, Enum):
    INVALID_TRACKER_ROOT = "invalid_tracker_root"
    INVALID_FIELD_SHAPE = "invalid_field_shape"
    MISSING_CANONICAL_FIELD = "missing_canonical_field"
    MISSING_FIELD_ID = "missing_field_id"
    MISMATCHED_FIELD_ID = "mismatched_field_id"
    MISSING_FIELD_NAME = "missing_field_name"
    UNKNOWN_FIELD_TYPE = "unknown_field_type"
    MISSING_PRESENCE = "missing_presence"
    INVALID_PRESENCE = "invalid_presence"
    INVALID_EXAMPLE_VALUES = "invalid_example_values"
    METADATA_MISMATCH = "metadata_mismatch"
    METADATA_NORMALIZED = "metadata_normalized"
    MISSING_NESTED_FIELDS = "missing_nested_fields"


class AuditSeverity(str, Enum):
    LEGACY = "legacy"
    CHANGED = "changed"


class AuditReason(BaseModel):
    code: AuditReasonCode
    path: str
    severity: AuditSeverity = AuditSeverity.LEGACY
    details: Optional[Dict[str, Any]] = None


class SchemaAudit(BaseModel):
    is_legacy: bool = False
    changed: bool = False
    reasons: List[AuditReason] = Field(default_factory=list)
    normalized: Dict[str, Any] = Field(default_factory=dict)

    @property
    def reason_codes(self) -> List[str]:
        return [reason.code.value for reason in self.reasons]


class CanonicalField(BaseModel):
    """What the auditor needs to know about one canonical field."""
    id: Optional[str] = None
    name: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    nested: Dict[str, "CanonicalField"] = Field(default_factory=dict)

    @property
    def required(self) -> bool:
        # Backend automation depends on internal fields being present
        return self.metadata.get("internal") is True


CanonicalField.model_rebuild()


def normalize_metadata(metadata: Any) -> Dict[str, Any]:
    """Canonical metadata dict: internal, external, internalKeyId, internalOnly."""
    metadata = metadata if isinstance(metadata, Mapping) else {}
    internal = metadata.get("internal") is True
    external = metadata.get("external") is not False
    normalized = {
        "internal": internal,
        "external": external,
        "internalKeyId": metadata["internalKeyId"] if isinstance(metadata.get("internalKeyId"), str) else None,
    }
    if "internalOnly" in metadata:
        normalized["internalOnly"] = bool(metadata["internalOnly"])
    else:
        normalized["internalOnly"] = internal and not external
    return normalized


def _metadata_equals(a: Mapping, b: Mapping) -> bool:
    return (
        a.get("internal") == b.get("internal")
        and a.get("external") == b.get("external")
        and (a.get("internalKeyId") or None) == (b.get("internalKeyId") or None)
        and a.get("internalOnly") == b.get("internalOnly")
    )


def build_canonical_field_map(definition: Any) -> Dict[str, CanonicalField]:
    """Index a canonical definition by field id."""
    canonical: Dict[str, CanonicalField] = {}
    if not isinstance(definition, Mapping):
        return canonical
    for field_id, field in definition.items():
        if not isinstance(field, Mapping):
            continue
        canonical[field_id] = CanonicalField(
            id=field["id"].strip() if isinstance(field.get("id"), str) else None,
            name=field["name"].strip() if isinstance(field.get("name"), str) else None,
            metadata=normalize_metadata(field.get("metadata")),
            nested=build_canonical_field_map(field.get("nestedFields") or {}),
        )
    return canonical


class _AuditContext:
    def __init__(self, root_path: str):
        self.root_path = root_path
        self.changed = False
        self.legacy = False
        self.reasons: List[AuditReason] = []

    def push(self, code: AuditReasonCode, path: List[str], severity: AuditSeverity = AuditSeverity.LEGACY,
             details: Optional[Dict[str, Any]] = None) -> None:
        route = ".".join([self.root_path, *path] if self.root_path else path)
        self.reasons.append(AuditReason(code=code, path=route, severity=severity, details=details))
        if severity == AuditSeverity.LEGACY:
            self.legacy = True


def audit_schema(definition: Any, canonical: Optional[Any] = None,
                 root_path: str = DEFAULT_ROOT_PATH) -> SchemaAudit:
    """
    Audit a raw tracker definition.

    Args:
        definition: Raw definition (field id -> field dict). Never mutated.
        canonical: Canonical definition, or a map from build_canonical_field_map().
            Defaults to the built-in definition.
        root_path: Prefix for reason paths

    Returns:
        SchemaAudit with the normalized copy of ``definition``.
    """
    if canonical is None:
        canonical = DEFAULT_TRACKER_DEFINITION
    canonical_map = canonical if _is_canonical_map(canonical) else build_canonical_field_map(canonical)

    context = _AuditContext(root_path)
    normalized = copy.deepcopy(definition)

    if not isinstance(normalized, dict):
        context.push(AuditReasonCode.INVALID_TRACKER_ROOT, [], details={"received_type": type(normalized).__name__})
        return _finalize(context, {}, canonical_map)

    _align_fields(normalized, canonical_map, context, [])
    return _finalize(context, normalized, canonical_map)


def _is_canonical_map(value: Any) -> bool:
    return isinstance(value, Mapping) and bool(value) and all(isinstance(v, CanonicalField) for v in value.values())


def _finalize(context: _AuditContext, normalized: dict, canonical_map: Mapping) -> SchemaAudit:
    is_legacy = context.legacy or _has_canonical_gaps(normalized, canonical_map)
    if is_legacy:
        logger.info(
            "Tracker definition flagged as legacy",
            extra={"metadata": {"root_path": context.root_path, "reason_codes": [r.code.value for r in context.reasons]}},
        )
    return SchemaAudit(
        is_legacy=is_legacy,
        changed=context.changed,
        reasons=context.reasons,
        normalized=normalized,
    )


def _align_fields(fields: Any, canonical_map: Mapping[str, CanonicalField],
                  context: _AuditContext, path: List[str]) -> None:
    for canonical_id, canonical_field in canonical_map.items():
        if canonical_field.required and not isinstance(fields.get(canonical_id), dict):
            context.push(AuditReasonCode.MISSING_CANONICAL_FIELD, [*path, canonical_id])

    for field_id, field in fields.items():
        field_path = [*path, str(field_id)]
        if not isinstance(field, dict):
            context.push(AuditReasonCode.INVALID_FIELD_SHAPE, field_path,
                         details={"received_type": type(field).__name__})
            continue

        canonical_field = canonical_map.get(field_id)
        _sanitize_field(field, canonical_field, context, field_path)

        nested = field.get("nestedFields")
        nested_canonical = canonical_field.nested if canonical_field else {}
        if isinstance(nested, dict):
            _align_fields(nested, nested_canonical, context, [*field_path, "nestedFields"])
            continue

        if canonical_field and canonical_field.nested and canonical_field.required:
            context.push(AuditReasonCode.MISSING_NESTED_FIELDS, [*field_path, "nestedFields"])
        field["nestedFields"] = {}
        context.changed = True


def _sanitize_field(field: dict, canonical_field: Optional[CanonicalField],
                    context: _AuditContext, path: List[str]) -> None:
    _sanitize_identity(field, canonical_field, context, path)
    _sanitize_type(field, context, path)
    _sanitize_presence(field, context, path)
    _sanitize_examples(field, context, path)
    _sanitize_metadata(field, canonical_field, context, path)


def _sanitize_identity(field: dict, canonical_field: Optional[CanonicalField],
                       context: _AuditContext, path: List[str]) -> None:
    field_id = path[-1]
    current_id = field["id"].strip() if isinstance(field.get("id"), str) else ""
    canonical_id = canonical_field.id if canonical_field else None

    if current_id:
        if field["id"] != current_id:
            field["id"] = current_id
            context.changed = True
        if canonical_id and current_id != canonical_id:
            context.push(AuditReasonCode.MISMATCHED_FIELD_ID, path,
                         details={"expected": canonical_id, "received": current_id})
            field["id"] = canonical_id
            context.changed = True
        elif not canonical_id and current_id != field_id:
            context.push(AuditReasonCode.MISMATCHED_FIELD_ID, path, AuditSeverity.CHANGED,
                         details={"expected": field_id, "received": current_id})
    else:
        context.push(AuditReasonCode.MISSING_FIELD_ID, path,
                     details={"expected": canonical_id or field_id})
        field["id"] = canonical_id or field_id
        context.changed = True

    name = field["name"].strip() if isinstance(field.get("name"), str) else ""
    if name:
        if field["name"] != name:
            field["name"] = name
            context.changed = True
        return

    label = field["label"].strip() if isinstance(field.get("label"), str) else ""
    fallback = label or field["id"]
    context.push(AuditReasonCode.MISSING_FIELD_NAME, path,
                 details={"used": "label" if label else "id", "name": fallback})
    field["name"] = fallback
    context.changed = True


def _sanitize_type(field: dict, context: _AuditContext, path: List[str]) -> None:
    raw = field.get("type")
    normalized = raw.strip().upper() if isinstance(raw, str) else ""
    if normalized in FieldType._value2member_map_:
        if raw != normalized:
            field["type"] = normalized
            context.changed = True
        return
    context.push(AuditReasonCode.UNKNOWN_FIELD_TYPE, path, details={"received": raw})
    field["type"] = FieldType.STRING.value
    context.changed = True


def _sanitize_presence(field: dict, context: _AuditContext, path: List[str]) -> None:
    raw = field.get("presence")
    normalized = raw.strip().upper() if isinstance(raw, str) else None
    if normalized in FieldPresence._value2member_map_:
        if raw != normalized:
            field["presence"] = normalized
            context.changed = True
        return

    if normalized:
        context.push(AuditReasonCode.INVALID_PRESENCE, path, details={"received": raw})
    else:
        context.push(AuditReasonCode.MISSING_PRESENCE, path, AuditSeverity.CHANGED, details={"received": raw})
    field["presence"] = FieldPresence.DYNAMIC.value
    context.changed = True


def _sanitize_examples(field: dict, context: _AuditContext, path: List[str]) -> None:
    raw = field.get("exampleValues")
    if raw is None:
        field["exampleValues"] = []
        context.changed = True
        return
    if isinstance(raw, list) and all(isinstance(item, str) for item in raw):
        return

    items = raw if isinstance(raw, list) else [raw]
    field["exampleValues"] = [
        item if isinstance(item, str) else json.dumps(item, ensure_ascii=False)
        for item in items
        if item is not None
    ]
    context.push(AuditReasonCode.INVALID_EXAMPLE_VALUES, path, AuditSeverity.CHANGED,
                 details={"received_type": type(raw).__name__})
    context.changed = True


def _sanitize_metadata(field: dict, canonical_field: Optional[CanonicalField],
                       context: _AuditContext, path: List[str]) -> None:
    current = field.get("metadata") if isinstance(field.get("metadata"), dict) else {}
    normalized = normalize_metadata(current)

    if canonical_field is not None:
        expected = canonical_field.metadata
        if not _metadata_equals(normalized, expected):
            context.push(AuditReasonCode.METADATA_MISMATCH, path, details={"expected": expected})
            field["metadata"] = dict(expected)
            context.changed = True
        elif not _metadata_equals(current, expected):
            context.push(AuditReasonCode.METADATA_NORMALIZED, path, AuditSeverity.CHANGED)
            field["metadata"] = dict(expected)
            context.changed = True
    elif not _metadata_equals(current, normalized):
        context.push(AuditReasonCode.METADATA_NORMALIZED, path, AuditSeverity.CHANGED)
        field["metadata"] = normalized
        context.changed = True


def _has_canonical_gaps(definition: Any, canonical_map: Mapping[str, CanonicalField]) -> bool:
    if not canonical_map:
        return False
    if not isinstance(definition, Mapping):
        return True
    for canonical_id, canonical_field in canonical_map.items():
        if not canonical_field.required:
            continue
        field = definition.get(canonical_id)
        if not isinstance(field, Mapping):
            return True
        if canonical_field.nested and _has_canonical_gaps(field.get("nestedFields"), canonical_field.nested):
            return True
    return False


def generate_legacy_preset_name(original_name: Any, existing_names: Iterable[str] = (),
                                prefix: Optional[str] = None, timestamp: Optional[datetime] = None) -> str:
    """
    Unique quarantine label for a legacy preset, e.g. ``❌ Legacy 2024-10-16 09:15 My Preset``.

    A `` (2)``, `` (3)``... suffix is added while the label collides with
    ``existing_names`` (any iterable of names, or a mapping keyed by name).
    """
    prefix = prefix.strip() if isinstance(prefix, str) and prefix.strip() else LEGACY_PRESET_PREFIX
    name = original_name.strip() if isinstance(original_name, str) and original_name.strip() else "Preset"
    moment = (timestamp or datetime.now(timezone.utc)).astimezone(timezone.utc)
    base = f"{prefix} {moment.strftime('%Y-%m-%d %H:%M')} {name}".strip()

    taken = set(existing_names or ())
    candidate = base
    counter = 2
    while candidate in taken:
        candidate = f"{base} ({counter})"
        counter += 1
    return candidate
