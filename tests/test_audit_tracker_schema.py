"""
Tests for the preset audit script.
"""

import copy
import json
import os
import sys

# Add project root and scripts to path
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, ROOT)
sys.path.insert(0, os.path.join(ROOT, "scripts"))

import yaml

from audit_tracker_schema import audit_preset_file
from scenetracker.schemas import DEFAULT_TRACKER_DEFINITION
from scenetracker.utils.schema_auditor import LEGACY_PRESET_PREFIX


def definition():
    return copy.deepcopy(DEFAULT_TRACKER_DEFINITION)


class TestAuditPresetFile:
    """Auditing preset files on disk."""

    def test_clean_preset(self, tmp_path):
        path = tmp_path / "default.json"
        path.write_text(json.dumps({"name": "Default", "trackerDef": definition()}), encoding="utf-8")
        result = audit_preset_file(path, write=True)
        assert result["is_legacy"] is False
        assert result["changed"] is False
        assert result["written"] is False

    def test_harmless_changes_are_written_back(self, tmp_path):
        preset = {"name": "Mine", "trackerDef": definition()}
        preset["trackerDef"]["field-weather"]["type"] = "string"
        path = tmp_path / "mine.json"
        path.write_text(json.dumps(preset), encoding="utf-8")

        result = audit_preset_file(path, write=True)
        assert result["changed"] is True
        assert result["written"] is True
        saved = json.loads(path.read_text(encoding="utf-8"))
        assert saved["name"] == "Mine"
        assert saved["trackerDef"]["field-weather"]["type"] == "STRING"

    def test_changes_are_not_written_without_flag(self, tmp_path):
        preset = definition()
        preset["field-weather"]["presence"] = "dynamic"
        path = tmp_path / "bare.yaml"
        path.write_text(yaml.safe_dump(preset, sort_keys=False), encoding="utf-8")

        result = audit_preset_file(path)
        assert result["changed"] is True
        assert result["written"] is False
        assert yaml.safe_load(path.read_text(encoding="utf-8"))["field-weather"]["presence"] == "dynamic"

    def test_legacy_preset_gets_quarantine_name(self, tmp_path):
        preset = definition()
        del preset["field-time-anchor"]
        path = tmp_path / "old.json"
        original = json.dumps(preset)
        path.write_text(original, encoding="utf-8")

        result = audit_preset_file(path, write=True)
        assert result["is_legacy"] is True
        assert result["quarantine_name"].startswith(LEGACY_PRESET_PREFIX)
        assert result["quarantine_name"].endswith(" old")
        assert "missing_canonical_field" in [reason["code"] for reason in result["reasons"]]
        assert path.read_text(encoding="utf-8") == original
