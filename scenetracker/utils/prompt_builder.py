"""
Tracker Generation Prompt Builder

Assembles the system and request prompts sent to the model when a tracker is
(re)generated. Templates use ``{{key}}`` placeholders and
``{{#if name}}...{{/if}}`` conditional sections.

Usage:
    from scenetracker.utils.prompt_builder import build_system_prompt, build_request_prompt

    system_prompt = build_system_prompt(schema, char_names=["Emma", "James"], messages=history)
    request_prompt = build_request_prompt(schema, message_text=latest.text)
"""
import logging
import re
from enum import Enum
from typing import Any, Iterable, List, Optional, Sequence

from pydantic import BaseModel

from scenetracker.config import get_settings
from scenetracker.schemas.field_schema import IncludeFilter, ensure_schema
from scenetracker.utils.tracker_codec import OutputFormat, encode_tracker
from scenetracker.utils.tracker_engine import (
    clean,
    default_tree,
    normalize,
    strip_internal_only,
    tracker_prompt,
)

logger = logging.getLogger(__name__)


DEFAULT_SYSTEM_PROMPT = (
    "You are a scene tracker for a roleplay between {{charNames}}. After each message you "
    "update a structured record of the scene: time, location, weather, topics, who is present "
    "and what each character looks like and is doing. Only change values the message gives a "
    "reason to change; keep everything else as it was.\n\n"
    "Reply with the complete tracker in {{trackerFormat}} between <tracker> and </tracker> tags, "
    "using exactly this structure:\n"
    "<tracker>\n{{defaultTracker}}\n</tracker>"
)

DEFAULT_CONTEXT_TEMPLATE = (
    "{{trackerSystemPrompt}}\n\n"
    "{{#if participantGuidance}}{{participantGuidance}}\n\n{{/if}}"
    "<characters>\n{{characterDescriptions}}\n</characters>\n\n"
    "<recent_messages>\n{{recentMessages}}\n</recent_messages>\n\n"
    "<current_tracker>\n{{currentTracker}}\n</current_tracker>\n\n"
    "<tracker_fields>\n{{trackerFieldPrompt}}\n</tracker_fields>"
)

DEFAULT_RECENT_MESSAGES_TEMPLATE = (
    "{{#if tracker}}<tracker>\n{{tracker}}\n</tracker>\n{{/if}}{{char}}: {{message}}"
)

DEFAULT_CHARACTER_DESCRIPTION_TEMPLATE = "<{{char}}>\n{{charDescription}}\n</{{char}}>"

DEFAULT_REQUEST_PROMPT = (
    "[Pause the roleplay. Update the tracker for the message below.]\n\n"
    "<message>\n{{message}}\n</message>\n\n"
    "Field instructions:\n{{trackerFieldPrompt}}\n\n"
    "Answer with the tracker in {{trackerFormat}} inside <tracker></tracker> tags and nothing else."
)

PARTICIPANT_GUIDANCE_HEADER = "### Participant Policy"
PARTICIPANT_GUIDANCE_BODY = (
    "Always include the following participants in CharactersPresent and Characters: {{participants}}."
)
PARTICIPANT_GUIDANCE_FIELDS = (
    "Never remove these participants; infer their state if they are temporarily off-screen."
)

_TRACKER_TAG_RE = re.compile(r"<tracker>[\s\S]*?</tracker>", re.IGNORECASE)


class ParticipantTarget(str, Enum):
    """Whose names the participant policy pins into the tracker."""
    BOTH = "both"
    USER = "user"
    CHARACTER = "character"
    NONE = "none"


class ParticipantPolicy(BaseModel):
    """Guidance text for the system prompt plus the names used as entity keys."""
    guidance: str = ""
    participants: List[str] = []


class CharacterDescription(BaseModel):
    name: str
    description: str = ""


class PromptMessage(BaseModel):
    """One chat message as shown to the tracker model."""
    name: str
    text: str
    tracker: Optional[dict] = None
    is_system: bool = False


def format_template(template: str, values: dict) -> str:
    """Replace every ``{{key}}`` with its value (None becomes an empty string)."""
    result = template
    for key, value in values.items():
        result = result.replace("{{" + key + "}}", "" if value is None else str(value))
    return result


def conditional_section(template: str, section_name: str, condition: bool, content: str) -> str:
    """Replace ``{{#if section_name}}...{{/if}}`` with ``content``, or remove it."""
    pattern = re.compile(r"\{\{#if " + re.escape(section_name) + r"\}\}([\s\S]*?)\{\{/if\}\}")
    if not condition:
        return pattern.sub("", template)
    # The section body is itself a template for the content
    return pattern.sub(lambda match: format_template(match.group(1), {section_name: content}), template)


def join_names(names: Iterable[str]) -> str:
    """``A``, ``A and B``, ``A, B, and C``. Blank and duplicate names are skipped."""
    unique: List[str] = []
    for name in names:
        if not isinstance(name, str):
            continue
        trimmed = name.strip()
        if trimmed and trimmed not in unique:
            unique.append(trimmed)

    if not unique:
        return ""
    if len(unique) == 1:
        return unique[0]
    if len(unique) == 2:
        return " and ".join(unique)
    return f"{', '.join(unique[:-1])}, and {unique[-1]}"


def _format_participant_list(names: Sequence[str]) -> str:
    if len(names) == 2:
        return f"{names[0]} and {names[1]}"
    return ", ".join(names)


def build_participant_guidance(target: Optional[str] = None, user: Optional[str] = None,
                               characters: Iterable[str] = (),
                               body_template: str = PARTICIPANT_GUIDANCE_BODY) -> ParticipantPolicy:
    """
    Participant policy for the active chat.

    ``target`` picks whose names are pinned (the configured
    ``participant_target`` when omitted). The user comes first, then the
    characters in order. An empty policy is returned when nobody qualifies.
    """
    target = ParticipantTarget((target or get_settings().participant_target).lower())
    if target == ParticipantTarget.NONE:
        return ParticipantPolicy()

    candidates: List[str] = []
    if target in (ParticipantTarget.USER, ParticipantTarget.BOTH) and isinstance(user, str):
        candidates.append(user)
    if target in (ParticipantTarget.CHARACTER, ParticipantTarget.BOTH):
        candidates.extend(name for name in characters if isinstance(name, str))

    participants: List[str] = []
    for name in candidates:
        name = name.strip()
        if name and name not in participants:
            participants.append(name)
    if not participants:
        return ParticipantPolicy()

    names = _format_participant_list(participants)
    body = body_template.strip()
    if "{{participants}}" in body:
        body = format_template(body, {"participants": names})
    else:
        body = f"{body} {names}".strip()

    guidance = "\n".join([PARTICIPANT_GUIDANCE_HEADER, body, PARTICIPANT_GUIDANCE_FIELDS])
    return ParticipantPolicy(guidance=guidance, participants=participants)


def _encode(tree: Any, fmt: OutputFormat) -> str:
    return encode_tracker(tree, fmt).strip()


def format_tracker_for_prompt(schema: Any, tracker: Any, include: IncludeFilter = IncludeFilter.DYNAMIC,
                              fmt: Optional[OutputFormat] = None, clean_defaults: bool = True) -> str:
    """
    Render a stored tracker for the model.

    The tracker is normalized to ``include`` without the extra-field side
    channel, placeholder defaults are blanked, and internal-only fields are
    removed.
    """
    fmt = OutputFormat(fmt or get_settings().tracker_format)
    view = normalize(schema, tracker, include, include_extra=False)
    if clean_defaults:
        view = clean(schema, view, preserve_structure=True)
    view = strip_internal_only(schema, view)
    return _encode(view, fmt)


def build_character_descriptions(characters: Sequence[CharacterDescription],
                                 template: str = DEFAULT_CHARACTER_DESCRIPTION_TEMPLATE) -> str:
    parts = []
    for character in characters:
        description = character.description.strip()
        if not description:
            continue
        parts.append(format_template(template, {"char": character.name, "charDescription": description}))
    return "\n\n".join(parts).strip()


def build_recent_messages(schema: Any, messages: Sequence[PromptMessage],
                          template: str = DEFAULT_RECENT_MESSAGES_TEMPLATE,
                          include: IncludeFilter = IncludeFilter.DYNAMIC,
                          fmt: Optional[OutputFormat] = None,
                          limit: Optional[int] = None) -> Optional[str]:
    """The last ``limit`` non-system messages, each with its tracker when it has one."""
    if limit is None:
        limit = get_settings().number_of_messages
    visible = [message for message in messages if not message.is_system]
    if limit > 0:
        visible = visible[-limit:]
    if not visible:
        return None

    rendered = []
    for message in visible:
        text = _TRACKER_TAG_RE.sub("", message.text).strip()
        tracker_text = ""
        if message.tracker:
            tracker_text = format_tracker_for_prompt(schema, message.tracker, include, fmt, clean_defaults=False)
        entry = conditional_section(template, "tracker", bool(tracker_text), tracker_text)
        rendered.append(format_template(entry, {"char": message.name, "message": text}))
    return "\n".join(rendered)


def build_system_prompt(schema: Any, char_names: Iterable[str] = (),
                        characters: Sequence[CharacterDescription] = (),
                        messages: Sequence[PromptMessage] = (),
                        current_tracker: Optional[dict] = None,
                        include: IncludeFilter = IncludeFilter.DYNAMIC,
                        fmt: Optional[OutputFormat] = None,
                        participant_policy: Optional[ParticipantPolicy] = None,
                        system_template: str = DEFAULT_SYSTEM_PROMPT,
                        context_template: str = DEFAULT_CONTEXT_TEMPLATE,
                        recent_messages_template: str = DEFAULT_RECENT_MESSAGES_TEMPLATE,
                        character_template: str = DEFAULT_CHARACTER_DESCRIPTION_TEMPLATE) -> str:
    """
    Full system prompt for a tracker generation request.

    ``current_tracker`` is the tracker the model should update; when omitted
    the default tree is shown instead. With a ``participant_policy`` its
    guidance is added as its own section and its participants become the
    entity keys of the default tree.
    """
    schema = ensure_schema(schema)
    fmt = OutputFormat(fmt or get_settings().tracker_format)
    policy = participant_policy or ParticipantPolicy()
    scaffold = _encode(default_tree(schema, include, participant_seeds=policy.participants), fmt)

    tracker_system_prompt = format_template(system_template, {
        "charNames": join_names(char_names),
        "defaultTracker": scaffold,
        "trackerFormat": fmt.value.upper(),
    })

    if current_tracker:
        current = format_tracker_for_prompt(schema, current_tracker, include, fmt, clean_defaults=False)
    else:
        current = scaffold

    context_template = conditional_section(
        context_template, "participantGuidance", bool(policy.guidance), policy.guidance)
    prompt = format_template(context_template, {
        "trackerSystemPrompt": tracker_system_prompt,
        "characterDescriptions": build_character_descriptions(characters, character_template),
        "recentMessages": build_recent_messages(schema, messages, recent_messages_template, include, fmt),
        "currentTracker": current,
        "trackerFormat": fmt.value.upper(),
        "trackerFieldPrompt": tracker_prompt(schema, include),
    })
    logger.debug("Built tracker system prompt", extra={"metadata": {"length": len(prompt)}})
    return prompt


def build_request_prompt(schema: Any, message_text: str = "",
                         include: IncludeFilter = IncludeFilter.DYNAMIC,
                         fmt: Optional[OutputFormat] = None,
                         template: str = DEFAULT_REQUEST_PROMPT) -> str:
    fmt = OutputFormat(fmt or get_settings().tracker_format)
    return format_template(template, {
        "message": message_text,
        "trackerFieldPrompt": tracker_prompt(schema, include),
        "trackerFormat": fmt.value.upper(),
    })


def few_shot_example(schema: Any, example_index: int, include: IncludeFilter = IncludeFilter.DYNAMIC,
                     fmt: Optional[OutputFormat] = None) -> str:
    """A tracker filled from ``exampleValues[example_index]``, for few-shot prompting."""
    fmt = OutputFormat(fmt or get_settings().tracker_format)
    return _encode(default_tree(schema, include, example_index=example_index), fmt)
