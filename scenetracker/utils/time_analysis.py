"""
In-story time analysis.

The model reports the current in-story moment as an ISO-8601 ``TimeAnchor``.
Both the anchor and the derived ``TimeAnalysis`` are internal-only: they are
stored beside the tracker, never shown back to the model.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Optional, Tuple

logger = logging.getLogger(__name__)

TIME_ANCHOR_KEY = "TimeAnchor"
TIME_ANALYSIS_KEY = "TimeAnalysis"

NOTE_PARSED = "TimeAnchor parsed successfully."
NOTE_REGRESSED = "TimeAnchor regressed; elapsed values reset to 0."


def _iso_utc(moment: datetime) -> str:
    """``2024-10-16T09:15:30.000Z`` style, millisecond precision."""
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def sanitize_anchor(anchor: Any) -> Optional[str]:
    if not isinstance(anchor, str):
        return None
    trimmed = anchor.strip()
    if len(trimmed) >= 2 and trimmed[0] == trimmed[-1] and trimmed[0] in ("'", '"'):
        trimmed = trimmed[1:-1].strip()
    return trimmed or None


def parse_iso(value: str) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    try:
        moment = datetime.fromisoformat(value)
    except ValueError:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def _previous_moment(previous: Any) -> Optional[datetime]:
    if not isinstance(previous, dict):
        return None
    iso = previous.get("IsoTimestamp")
    if not isinstance(iso, str) or not iso.strip():
        return None
    return parse_iso(iso.strip())


def build_time_analysis(anchor: Any, previous: Optional[dict] = None,
                        now: Optional[datetime] = None) -> Optional[dict]:
    """
    Derive timeline values from a TimeAnchor.

    Args:
        anchor: Raw TimeAnchor value reported by the model
        previous: The previous message's TimeAnalysis, if any
        now: Override for ``ParsedAt`` (tests)

    Returns:
        The analysis dict; the previous analysis when no anchor was given;
        None when there is neither.
    """
    sanitized = sanitize_anchor(anchor)
    if sanitized is None:
        if isinstance(previous, dict):
            logger.debug("TimeAnchor not provided; reusing previous analysis")
            return previous
        return None

    moment = parse_iso(sanitized)
    error = None if moment is not None else f"Invalid ISO-8601 timestamp: {sanitized}"
    if error:
        logger.warning("TimeAnchor parsing issue: %s", error, extra={"metadata": {"anchor": anchor}})

    elapsed_seconds = None
    elapsed_days = None
    note = error or NOTE_PARSED

    previous_moment = _previous_moment(previous)
    if moment is not None and previous_moment is not None:
        delta = moment - previous_moment
        if delta.total_seconds() < 0:
            note = NOTE_REGRESSED
            elapsed_seconds = 0
            elapsed_days = 0.0
        else:
            elapsed_seconds = round(delta.total_seconds())
            elapsed_days = delta.total_seconds() / 86400

    epoch_millis = int(moment.timestamp() * 1000) if moment is not None else None
    analysis = {
        "AnchorRaw": sanitized,
        "IsoTimestamp": _iso_utc(moment) if moment is not None else "",
        "EpochMillis": str(epoch_millis) if epoch_millis is not None else "",
        "ElapsedSeconds": str(elapsed_seconds) if elapsed_seconds is not None else "",
        "ElapsedDays": f"{elapsed_days:.6f}" if elapsed_days is not None else "",
        "TimelineNote": note,
        "ParsedAt": _iso_utc(now or datetime.now(timezone.utc)),
    }
    logger.debug("Parsed TimeAnchor %s", sanitized, extra={"metadata": analysis})
    return analysis


def resolve_internal_time(internal: Optional[dict], raw_tracker: Any,
                          previous_internal: Optional[dict]) -> Tuple[dict, Any]:
    """
    Attach TimeAnchor/TimeAnalysis to a freshly generated internal payload.

    The anchor is taken from the new internal payload, then the raw model
    tracker, then the previous message's internal payload. Without any
    anchor the previous analysis is carried forward.

    Returns:
        ``(internal, anchor)``; ``internal`` is a new dict.
    """
    internal = dict(internal or {})
    previous_internal = previous_internal if isinstance(previous_internal, dict) else {}
    raw_anchor = raw_tracker.get(TIME_ANCHOR_KEY) if isinstance(raw_tracker, dict) else None

    anchor = internal.get(TIME_ANCHOR_KEY) or raw_anchor or previous_internal.get(TIME_ANCHOR_KEY)

    if anchor:
        internal[TIME_ANCHOR_KEY] = anchor
        analysis = build_time_analysis(anchor, previous_internal.get(TIME_ANALYSIS_KEY))
        if analysis:
            internal[TIME_ANALYSIS_KEY] = analysis
    elif previous_internal.get(TIME_ANALYSIS_KEY):
        if previous_internal.get(TIME_ANCHOR_KEY):
            internal[TIME_ANCHOR_KEY] = previous_internal[TIME_ANCHOR_KEY]
        internal[TIME_ANALYSIS_KEY] = previous_internal[TIME_ANALYSIS_KEY]

    return internal, anchor
