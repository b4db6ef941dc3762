"""
Tracker Definition Audit Script

Audits preset files against the built-in tracker definition and, optionally,
re-normalizes the trackers already stored for a chat.

Usage:
    # Audit one or more preset files (JSON or YAML, with or without a trackerDef key)
    python scripts/audit_tracker_schema.py --preset presets/default.json

    # Write the normalized definition back when only harmless changes were needed
    python scripts/audit_tracker_schema.py --preset presets/default.json --write

    # Re-normalize every stored tracker of a chat
    python scripts/audit_tracker_schema.py --chat-id <id>

    # Dry run (show what would be changed without modifying)
    python scripts/audit_tracker_schema.py --chat-id <id> --dry-run
"""
import asyncio
import argparse
import json
import sys
import os
from pathlib import Path
from typing import Optional

# Add parent to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import yaml
from sqlalchemy import select
from sqlalchemy.orm.attributes import flag_modified

from scenetracker.database import AsyncSessionLocal, init_db
from scenetracker.models import MessageTracker
from scenetracker.schemas import IncludeFilter, get_default_schema, load_schema
from scenetracker.utils.schema_auditor import audit_schema, generate_legacy_preset_name
from scenetracker.utils.tracker_codec import decode_tracker
from scenetracker.utils.tracker_engine import normalize
from scenetracker.utils.logging_config import setup_logging


def load_preset(path: Path) -> dict:
    data = decode_tracker(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path} does not contain a mapping")
    return data


def audit_preset_file(path: Path, write: bool = False, existing_names: Optional[set] = None) -> dict:
    """
    Audit one preset file.

    Returns:
        dict with audit results
    """
    preset = load_preset(path)
    wrapped = "trackerDef" in preset
    definition = preset["trackerDef"] if wrapped else preset

    audit = audit_schema(definition, root_path=f"{path.stem}.trackerDef")
    results = {
        "preset": str(path),
        "is_legacy": audit.is_legacy,
        "changed": audit.changed,
        "reasons": [reason.model_dump(mode="json", exclude_none=True) for reason in audit.reasons],
        "written": False,
    }

    if audit.is_legacy:
        results["quarantine_name"] = generate_legacy_preset_name(path.stem, existing_names or set())
        return results

    if write and audit.changed:
        if wrapped:
            preset["trackerDef"] = audit.normalized
        else:
            preset = audit.normalized
        if path.suffix.lower() in (".yaml", ".yml"):
            path.write_text(yaml.safe_dump(preset, sort_keys=False, allow_unicode=True), encoding="utf-8")
        else:
            path.write_text(json.dumps(preset, indent=2, ensure_ascii=False), encoding="utf-8")
        results["written"] = True

    return results


async def renormalize_chat(chat_id: str, definition: Optional[dict] = None, dry_run: bool = False) -> dict:
    """Re-run normalization over every stored tracker of a chat."""
    schema = load_schema(definition) if definition is not None else get_default_schema()
    results = {
        "chat_id": chat_id,
        "messages_checked": 0,
        "messages_fixed": [],
    }

    async with AsyncSessionLocal() as db:
        stmt = select(MessageTracker).where(
            MessageTracker.chat_id == chat_id
        ).order_by(MessageTracker.message_index)
        result = await db.execute(stmt)
        records = result.scalars().all()

        for record in records:
            results["messages_checked"] += 1
            normalized = normalize(schema, record.tracker or {}, IncludeFilter.ALL)
            if json.dumps(normalized, sort_keys=True) == json.dumps(record.tracker or {}, sort_keys=True):
                continue
            results["messages_fixed"].append(record.message_index)
            if not dry_run:
                record.tracker = normalized
                flag_modified(record, "tracker")

        if not dry_run and results["messages_fixed"]:
            await db.commit()

    return results


async def main():
    parser = argparse.ArgumentParser(
        description="Audit tracker definitions and re-normalize stored trackers"
    )
    parser.add_argument(
        "--preset",
        action="append",
        default=[],
        help="Preset file to audit (repeatable)"
    )
    parser.add_argument(
        "--write",
        action="store_true",
        help="Write normalized definitions back to non-legacy preset files"
    )
    parser.add_argument(
        "--chat-id",
        type=str,
        help="Re-normalize the stored trackers of this chat"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be changed without modifying anything"
    )

    args = parser.parse_args()
    setup_logging()

    if not args.preset and not args.chat_id:
        parser.print_help()
        sys.exit(1)

    if args.dry_run:
        print("=== DRY RUN MODE (no changes will be saved) ===\n")

    exit_code = 0
    taken = set()
    for preset_path in args.preset:
        result = audit_preset_file(Path(preset_path), write=args.write and not args.dry_run, existing_names=taken)
        print(json.dumps(result, indent=2, ensure_ascii=False))
        if result["is_legacy"]:
            taken.add(result["quarantine_name"])
            exit_code = 2

    if args.chat_id:
        await init_db()
        result = await renormalize_chat(args.chat_id, dry_run=args.dry_run)
        print(json.dumps(result, indent=2))

    sys.exit(exit_code)


if __name__ == "__main__":
    asyncio.run(main())
