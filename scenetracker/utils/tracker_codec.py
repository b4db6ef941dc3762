"""
Tracker text codec.

Trackers travel as YAML text at the system boundary (model prompts, model
responses, human-readable storage) and as plain dict trees everywhere else.
JSON is valid YAML, so the same decoder accepts both.

Decoding is stricter than YAML's defaults in two ways that matter for scene
state: timestamps stay strings (``2024-10-16T09:15:30Z`` must reach the time
analysis untouched) and clock-like values such as ``18:45`` are not read as
base-60 integers.
"""
import json
import logging
import re
from enum import Enum
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)


class OutputFormat(str, Enum):
    JSON = "json"
    YAML = "yaml"


class TrackerDecodeError(ValueError):
    """Tracker text could not be parsed."""


class _TrackerLoader(yaml.SafeLoader):
    """SafeLoader without implicit timestamp resolution."""


_TrackerLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != "tag:yaml.org,2002:timestamp"]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def _construct_clock_safe_int(loader, node):
    value = loader.construct_scalar(node)
    if ":" in value:
        return value
    return yaml.SafeLoader.construct_yaml_int(loader, node)


def _construct_clock_safe_float(loader, node):
    value = loader.construct_scalar(node)
    if ":" in value:
        return value
    return yaml.SafeLoader.construct_yaml_float(loader, node)


_TrackerLoader.add_constructor("tag:yaml.org,2002:int", _construct_clock_safe_int)
_TrackerLoader.add_constructor("tag:yaml.org,2002:float", _construct_clock_safe_float)


_TRACKER_TAG_RE = re.compile(r"<tracker>([\s\S]*?)</tracker>", re.IGNORECASE)
_FENCE_RE = re.compile(r"```[ \t]*([A-Za-z0-9_-]*)[ \t]*\n([\s\S]*?)```")


def _unwrap_fence(text: str) -> str:
    """Strip a single surrounding fenced code block, if the whole text is one."""
    stripped = text.strip()
    if not stripped.startswith("```"):
        return stripped
    match = _FENCE_RE.match(stripped)
    if match and match.end() == len(stripped):
        return match.group(2).strip()
    # Unclosed fence: drop the opening line
    _, _, rest = stripped.partition("\n")
    return rest.strip()


def decode_tracker(text: Any) -> Any:
    """
    Parse tracker text into a tree.

    Args:
        text: YAML or JSON text, optionally wrapped in a fenced code block

    Returns:
        The decoded value (normally a dict); ``{}`` for empty input.

    Raises:
        TrackerDecodeError: when the text is not valid YAML/JSON.
    """
    if text is None:
        return {}
    if isinstance(text, bytes):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise TrackerDecodeError(f"Tracker text is not valid UTF-8: {exc}") from exc
    if not isinstance(text, str):
        raise TrackerDecodeError(f"Expected tracker text, got {type(text).__name__}")

    body = _unwrap_fence(text)
    if not body:
        return {}

    try:
        data = yaml.load(body, Loader=_TrackerLoader)
    except yaml.YAMLError as exc:
        raise TrackerDecodeError(f"Invalid tracker text: {exc}") from exc

    return {} if data is None else data


def encode_tracker(tree: Any, fmt: OutputFormat = OutputFormat.YAML) -> str:
    """Serialize a tracker tree as YAML (insertion order kept) or indented JSON."""
    fmt = OutputFormat(fmt)
    if fmt == OutputFormat.JSON:
        return json.dumps(tree, indent=2, ensure_ascii=False)
    if tree is None or tree == {}:
        return ""
    return yaml.safe_dump(
        tree,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
        width=1000,
    )


def extract_tracker_block(text: str) -> Optional[str]:
    """
    Pull the tracker body out of a model response.

    Strategy (in order):
        1. The first ``<tracker>...</tracker>`` block (tag is case-insensitive).
        2. The last fenced code block.
    """
    if not text:
        return None

    match = _TRACKER_TAG_RE.search(text)
    if match:
        return match.group(1).strip()

    fences = list(_FENCE_RE.finditer(text))
    if fences:
        return fences[-1].group(2).strip()
    return None


def parse_tracker_response(text: str) -> Optional[dict]:
    """
    Extract and decode the tracker from a model response.

    Returns a dict, or ``None`` when nothing usable was found (logged).
    """
    if not text:
        logger.warning("tracker_parse_failed | reason=empty_response")
        return None

    block = extract_tracker_block(text)
    if block is None:
        block = text

    try:
        parsed = decode_tracker(block)
    except TrackerDecodeError as exc:
        logger.warning(
            "tracker_parse_failed | reason=decode_error | error=%s | raw_head=%.300s",
            exc, block[:300],
        )
        return None

    if not isinstance(parsed, dict):
        logger.warning(
            "tracker_parse_failed | reason=not_a_mapping | type=%s",
            type(parsed).__name__,
        )
        return None

    return parsed
