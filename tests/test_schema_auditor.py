"""
Tests for the tracker definition auditor and legacy preset naming.

Run with: pytest tests/test_schema_auditor.py -v
"""

import copy
import os
import sys
from datetime import datetime, timezone

# Add project root to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from scenetracker.schemas import DEFAULT_TRACKER_DEFINITION
from scenetracker.utils.schema_auditor import (
    LEGACY_PRESET_PREFIX,
    AuditReasonCode,
    AuditSeverity,
    audit_schema,
    build_canonical_field_map,
    generate_legacy_preset_name,
    normalize_metadata,
)


CANONICAL_METADATA = {"internal": False, "external": True, "internalOnly": False, "internalKeyId": None}


def default_definition():
    return copy.deepcopy(DEFAULT_TRACKER_DEFINITION)


def custom_field(**overrides):
    field = {
        "id": "custom-mood",
        "name": "Mood",
        "type": "STRING",
        "presence": "DYNAMIC",
        "prompt": "Overall mood of the scene.",
        "defaultValue": "",
        "exampleValues": [],
        "nestedFields": {},
        "metadata": dict(CANONICAL_METADATA),
    }
    field.update(overrides)
    return field


def with_custom(**overrides):
    definition = default_definition()
    definition["custom-mood"] = custom_field(**overrides)
    return definition


def reason(audit, code):
    matches = [r for r in audit.reasons if r.code == code]
    assert matches, f"expected {code.value} in {audit.reason_codes}"
    return matches[0]


class TestCanonicalDefinition:
    """The built-in definition is its own canonical form."""

    def test_default_definition_is_clean(self):
        audit = audit_schema(default_definition())
        assert not audit.is_legacy
        assert not audit.changed
        assert audit.reasons == []
        assert audit.normalized == DEFAULT_TRACKER_DEFINITION

    def test_custom_field_in_canonical_shape_is_clean(self):
        audit = audit_schema(with_custom())
        assert not audit.is_legacy
        assert not audit.changed

    def test_optional_canonical_field_may_be_removed(self):
        definition = default_definition()
        del definition["field-weather"]
        audit = audit_schema(definition)
        assert not audit.is_legacy
        assert audit.reasons == []

    def test_input_is_not_mutated(self):
        definition = with_custom(type="mood", presence=None)
        snapshot = copy.deepcopy(definition)
        audit_schema(definition)
        assert definition == snapshot

    def test_canonical_map(self):
        canonical = build_canonical_field_map(DEFAULT_TRACKER_DEFINITION)
        assert canonical["field-time-anchor"].required
        assert canonical["field-time-analysis"].nested["field-iso-timestamp"].required
        assert not canonical["field-time"].required
        assert canonical["field-characters"].nested["field-hair"].name == "Hair"


class TestLegacyReasons:
    """Definitions that cannot be used as-is."""

    def test_root_must_be_a_mapping(self):
        audit = audit_schema(["not", "a", "definition"])
        assert audit.is_legacy
        assert audit.reason_codes == ["invalid_tracker_root"]
        assert audit.normalized == {}

    def test_missing_internal_field(self):
        definition = default_definition()
        del definition["field-time-anchor"]
        audit = audit_schema(definition)
        assert audit.is_legacy
        assert reason(audit, AuditReasonCode.MISSING_CANONICAL_FIELD).path == "trackerDef.field-time-anchor"

    def test_missing_nested_internal_field(self):
        definition = default_definition()
        del definition["field-time-analysis"]["nestedFields"]["field-elapsed-seconds"]
        audit = audit_schema(definition)
        assert audit.is_legacy
        found = reason(audit, AuditReasonCode.MISSING_CANONICAL_FIELD)
        assert found.path == "trackerDef.field-time-analysis.nestedFields.field-elapsed-seconds"

    def test_missing_nested_fields_of_internal_field(self):
        definition = default_definition()
        del definition["field-time-analysis"]["nestedFields"]
        audit = audit_schema(definition)
        assert audit.is_legacy
        reason(audit, AuditReasonCode.MISSING_NESTED_FIELDS)
        assert audit.normalized["field-time-analysis"]["nestedFields"] == {}

    def test_malformed_field(self):
        definition = default_definition()
        definition["field-broken"] = "oops"
        audit = audit_schema(definition)
        assert audit.is_legacy
        found = reason(audit, AuditReasonCode.INVALID_FIELD_SHAPE)
        assert found.details == {"received_type": "str"}

    def test_missing_id_uses_canonical_id(self):
        definition = default_definition()
        del definition["field-time"]["id"]
        audit = audit_schema(definition)
        assert audit.is_legacy
        reason(audit, AuditReasonCode.MISSING_FIELD_ID)
        assert audit.normalized["field-time"]["id"] == "field-time"

    def test_mismatched_canonical_id_is_restored(self):
        definition = default_definition()
        definition["field-time"]["id"] = "field-clock"
        audit = audit_schema(definition)
        assert audit.is_legacy
        found = reason(audit, AuditReasonCode.MISMATCHED_FIELD_ID)
        assert found.details == {"expected": "field-time", "received": "field-clock"}
        assert audit.normalized["field-time"]["id"] == "field-time"

    def test_missing_name_falls_back_to_label(self):
        definition = default_definition()
        del definition["field-time"]["name"]
        definition["field-time"]["label"] = "Clock"
        audit = audit_schema(definition)
        assert audit.is_legacy
        found = reason(audit, AuditReasonCode.MISSING_FIELD_NAME)
        assert found.details == {"used": "label", "name": "Clock"}
        assert audit.normalized["field-time"]["name"] == "Clock"

    def test_missing_name_falls_back_to_id(self):
        audit = audit_schema(with_custom(name="  "))
        assert audit.normalized["custom-mood"]["name"] == "custom-mood"

    def test_unknown_type(self):
        audit = audit_schema(with_custom(type="MOOD_RING"))
        assert audit.is_legacy
        reason(audit, AuditReasonCode.UNKNOWN_FIELD_TYPE)
        assert audit.normalized["custom-mood"]["type"] == "STRING"

    def test_invalid_presence(self):
        audit = audit_schema(with_custom(presence="SOMETIMES"))
        assert audit.is_legacy
        reason(audit, AuditReasonCode.INVALID_PRESENCE)
        assert audit.normalized["custom-mood"]["presence"] == "DYNAMIC"

    def test_metadata_mismatch_on_canonical_field(self):
        definition = default_definition()
        definition["field-time"]["metadata"] = {"internal": True, "external": False}
        audit = audit_schema(definition)
        assert audit.is_legacy
        reason(audit, AuditReasonCode.METADATA_MISMATCH)
        assert audit.normalized["field-time"]["metadata"] == CANONICAL_METADATA

    def test_nested_paths(self):
        definition = default_definition()
        definition["field-characters"]["nestedFields"]["field-hair"]["type"] = "COLOR"
        audit = audit_schema(definition, root_path="preset.trackerDef")
        found = reason(audit, AuditReasonCode.UNKNOWN_FIELD_TYPE)
        assert found.path == "preset.trackerDef.field-characters.nestedFields.field-hair"


class TestHarmlessChanges:
    """Normalizations that do not make a definition legacy."""

    def test_lowercase_type_and_presence(self):
        audit = audit_schema(with_custom(type=" string ", presence="static"))
        assert not audit.is_legacy
        assert audit.changed
        assert audit.reasons == []
        assert audit.normalized["custom-mood"]["type"] == "STRING"
        assert audit.normalized["custom-mood"]["presence"] == "STATIC"

    def test_ephemeral_presence_is_accepted(self):
        audit = audit_schema(with_custom(presence="EPHEMERAL"))
        assert not audit.changed
        assert audit.reasons == []

    def test_missing_presence(self):
        field = custom_field()
        del field["presence"]
        definition = default_definition()
        definition["custom-mood"] = field
        audit = audit_schema(definition)
        assert not audit.is_legacy
        found = reason(audit, AuditReasonCode.MISSING_PRESENCE)
        assert found.severity == AuditSeverity.CHANGED
        assert audit.normalized["custom-mood"]["presence"] == "DYNAMIC"

    def test_non_string_examples_are_encoded(self):
        audit = audit_schema(with_custom(exampleValues=[["calm", "tense"], None, "plain"]))
        assert not audit.is_legacy
        reason(audit, AuditReasonCode.INVALID_EXAMPLE_VALUES)
        assert audit.normalized["custom-mood"]["exampleValues"] == ['["calm", "tense"]', "plain"]

    def test_missing_examples_become_empty_list(self):
        field = custom_field()
        del field["exampleValues"]
        definition = default_definition()
        definition["custom-mood"] = field
        audit = audit_schema(definition)
        assert audit.changed
        assert audit.reasons == []
        assert audit.normalized["custom-mood"]["exampleValues"] == []

    def test_missing_nested_fields_on_custom_field(self):
        field = custom_field()
        del field["nestedFields"]
        definition = default_definition()
        definition["custom-mood"] = field
        audit = audit_schema(definition)
        assert not audit.is_legacy
        assert audit.changed
        assert audit.normalized["custom-mood"]["nestedFields"] == {}

    def test_custom_id_differs_from_key(self):
        audit = audit_schema(with_custom(id="mood"))
        assert not audit.is_legacy
        found = reason(audit, AuditReasonCode.MISMATCHED_FIELD_ID)
        assert found.severity == AuditSeverity.CHANGED

    def test_partial_metadata_is_normalized(self):
        definition = default_definition()
        definition["field-time"]["metadata"] = {}
        audit = audit_schema(definition)
        assert not audit.is_legacy
        found = reason(audit, AuditReasonCode.METADATA_NORMALIZED)
        assert found.severity == AuditSeverity.CHANGED
        assert audit.normalized["field-time"]["metadata"] == CANONICAL_METADATA

    def test_custom_metadata_is_normalized(self):
        audit = audit_schema(with_custom(metadata={"internal": True, "external": False}))
        assert not audit.is_legacy
        assert audit.normalized["custom-mood"]["metadata"] == {
            "internal": True, "external": False, "internalKeyId": None, "internalOnly": True,
        }

    def test_normalize_metadata_defaults(self):
        assert normalize_metadata(None) == {
            "internal": False, "external": True, "internalKeyId": None, "internalOnly": False,
        }
        assert normalize_metadata({"internal": True, "external": True, "internalOnly": True})["internalOnly"]


class TestLegacyPresetName:
    """Quarantine labels for legacy presets."""

    MOMENT = datetime(2024, 10, 16, 9, 15, tzinfo=timezone.utc)

    def test_basic_name(self):
        name = generate_legacy_preset_name("My Preset", timestamp=self.MOMENT)
        assert name == f"{LEGACY_PRESET_PREFIX} 2024-10-16 09:15 My Preset"

    def test_blank_name(self):
        name = generate_legacy_preset_name("  ", timestamp=self.MOMENT)
        assert name.endswith(" Preset")

    def test_collisions_get_a_counter(self):
        base = generate_legacy_preset_name("P", timestamp=self.MOMENT)
        taken = {base, f"{base} (2)"}
        assert generate_legacy_preset_name("P", taken, timestamp=self.MOMENT) == f"{base} (3)"

    def test_custom_prefix(self):
        name = generate_legacy_preset_name("P", prefix="Old", timestamp=self.MOMENT)
        assert name == "Old 2024-10-16 09:15 P"
