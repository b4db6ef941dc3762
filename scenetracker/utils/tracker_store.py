"""
Tracker Persistence

Stores one canonical tracker per chat message, with its internal-only payload
kept in a separate column. Callers pass an ``AsyncSession`` (see
``scenetracker.database.get_db``); every write commits.

Usage:
    async with AsyncSessionLocal() as db:
        record = await record_generated_tracker(db, chat_id, 12, model_response)
        if record:
            print(record.tracker, record.tracker_internal)
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import flag_modified

from scenetracker.config import get_settings
from scenetracker.models import MessageTracker
from scenetracker.schemas import IncludeFilter, ensure_schema, get_default_schema
from scenetracker.utils.extra_fields import log_unexpected_field_keys
from scenetracker.utils.logging_config import ChatAdapter
from scenetracker.utils.time_analysis import (
    TIME_ANALYSIS_KEY,
    TIME_ANCHOR_KEY,
    resolve_internal_time,
)
from scenetracker.utils.tracker_codec import parse_tracker_response
from scenetracker.utils.tracker_engine import (
    apply_update,
    default_tree,
    exists,
    normalize,
    strip_internal_only,
)

logger = logging.getLogger(__name__)


def _schema_or_default(schema: Any):
    return ensure_schema(schema) if schema is not None else get_default_schema()


async def get_message_tracker(db: AsyncSession, chat_id: str, message_index: int,
                              for_update: bool = False) -> Optional[MessageTracker]:
    stmt = select(MessageTracker).where(
        MessageTracker.chat_id == chat_id,
        MessageTracker.message_index == message_index,
    )
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_last_tracker(db: AsyncSession, chat_id: str,
                           before_index: Optional[int] = None) -> Optional[MessageTracker]:
    """Most recent message with a non-empty tracker, optionally strictly before ``before_index``."""
    stmt = select(MessageTracker).where(MessageTracker.chat_id == chat_id)
    if before_index is not None:
        stmt = stmt.where(MessageTracker.message_index < before_index)
    stmt = stmt.order_by(MessageTracker.message_index.desc())

    result = await db.execute(stmt)
    for record in result.scalars():
        if record.tracker:
            return record
    return None


async def _store(db: AsyncSession, record: Optional[MessageTracker], chat_id: str, message_index: int,
                 tracker: Dict[str, Any], internal: Optional[Dict[str, Any]]) -> MessageTracker:
    if record is None:
        record = MessageTracker(chat_id=chat_id, message_index=message_index)
        db.add(record)

    record.tracker = tracker
    record.tracker_internal = internal or None
    flag_modified(record, "tracker")
    flag_modified(record, "tracker_internal")
    await db.commit()
    return record


async def save_tracker(db: AsyncSession, chat_id: str, message_index: int, tracker: Any,
                       schema: Any = None, use_incoming_extra_fields: bool = False) -> MessageTracker:
    """
    Merge an edited or generated tracker into the one stored for a message.

    Args:
        db: Session
        chat_id: Chat identifier
        message_index: Message position within the chat
        tracker: Incoming tracker (tree or text)
        schema: Tracker definition; the built-in one when omitted
        use_incoming_extra_fields: Take ``_extraFields`` from ``tracker`` only (editor saves)

    Returns:
        The stored record. Internal values the update does not carry are
        kept from the stored record.
    """
    log = ChatAdapter(logger, chat_id, message_index)
    schema = _schema_or_default(schema)

    record = await get_message_tracker(db, chat_id, message_index, for_update=True)
    existing = normalize(schema, record.tracker if record else {}, IncludeFilter.ALL)
    update = apply_update(schema, existing, tracker, use_incoming_extra_fields=use_incoming_extra_fields)

    internal = dict(record.tracker_internal or {}) if record else {}
    internal.update(update.internal or {})

    record = await _store(db, record, chat_id, message_index, update.merged, internal)
    log.info(
        "Tracker saved",
        extra={"event_type": "tracker_saved",
               "metadata": {"has_internal": bool(internal)}},
    )
    return record


async def record_generated_tracker(db: AsyncSession, chat_id: str, message_index: int,
                                   response: Any, schema: Any = None,
                                   participant_seeds: Optional[List[str]] = None) -> Optional[MessageTracker]:
    """
    Store a tracker produced by the model for ``message_index``.

    The response (text or an already parsed dict) is merged over the last
    tracker before this message, or over the default tree for a new chat
    (with ``participant_seeds`` as its entity keys when given).
    TimeAnchor/TimeAnalysis are resolved into the internal payload.

    Returns:
        The stored record, or None when the response held no usable tracker.
    """
    log = ChatAdapter(logger, chat_id, message_index)
    schema = _schema_or_default(schema)

    raw = response if isinstance(response, dict) else parse_tracker_response(response)
    if raw is None:
        log.warning("Model response did not contain a tracker",
                    extra={"event_type": "tracker_parse_failed"})
        return None

    log_unexpected_field_keys(raw, schema, limit=get_settings().extra_field_log_limit)

    if not exists(schema, raw):
        log.info("Generated tracker is empty or all defaults; nothing stored",
                 extra={"event_type": "tracker_skipped"})
        return None

    last = await get_last_tracker(db, chat_id, before_index=message_index)
    # Internal-only placeholders must not leak into the first internal payload
    previous = last.tracker if last else strip_internal_only(
        schema, default_tree(schema, IncludeFilter.ALL, participant_seeds=participant_seeds))
    update = apply_update(schema, previous, raw)

    internal, anchor = resolve_internal_time(
        update.internal, raw, last.tracker_internal if last else None)

    merged = dict(update.merged)
    merged.pop(TIME_ANCHOR_KEY, None)
    merged.pop(TIME_ANALYSIS_KEY, None)

    record = await get_message_tracker(db, chat_id, message_index, for_update=True)
    record = await _store(db, record, chat_id, message_index, merged, internal)
    log.info(
        "Generated tracker stored",
        extra={"event_type": "tracker_generated",
               "metadata": {"time_anchor": anchor, "based_on": last.message_index if last else None}},
    )
    return record
