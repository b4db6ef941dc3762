"""
Built-in tracker definition.

This is the definition new chats start from and the canonical reference the
schema auditor compares user presets against. Example values are JSON-encoded
strings; for per-character fields each example is a list with one entry per
character of the matching ``Characters`` example.
"""
import copy
from typing import Any, Dict

from .field_schema import TrackerSchema, load_schema


DEFAULT_TRACKER_DEFINITION: Dict[str, Any] = {
    "field-time": {
        "id": "field-time",
        "name": "Time",
        "type": "STRING",
        "presence": "DYNAMIC",
        "prompt": "Format: HH:MM:SS; MM/DD/YYYY (Day Name). Advance time realistically based on what happened in the message.",
        "defaultValue": "<Updated time if changed>",
        "exampleValues": [
            '"09:15:30; 10/16/2024 (Wednesday)"',
            '"18:45:50; 10/16/2024 (Wednesday)"',
            '"15:10:20; 10/16/2024 (Wednesday)"',
        ],
        "nestedFields": {},
        "metadata": {"internal": False, "external": True, "internalOnly": False, "internalKeyId": None},
    },
    "field-location": {
        "id": "field-location",
        "name": "Location",
        "type": "STRING",
        "presence": "DYNAMIC",
        "prompt": "Provide a detailed and specific location, from the immediate surroundings outward.",
        "defaultValue": "<Updated location if changed>",
        "exampleValues": [
            '"Conference Room B, 12th Floor, Apex Corporation, Downtown Seattle, WA"',
            '"Main Gallery, City Art Museum, Central Park, New York City, NY"',
            '"Old Clock Tower Library, Riverside Academy, Boston, MA"',
        ],
        "nestedFields": {},
        "metadata": {"internal": False, "external": True, "internalOnly": False, "internalKeyId": None},
    },
    "field-weather": {
        "id": "field-weather",
        "name": "Weather",
        "type": "STRING",
        "presence": "DYNAMIC",
        "prompt": "Describe current weather concisely to set the scene.",
        "defaultValue": "<Updated weather if changed>",
        "exampleValues": [
            '"Overcast, mild temperature"',
            '"Clear skies, warm evening"',
            '"Sunny, gentle sea breeze"',
        ],
        "nestedFields": {},
        "metadata": {"internal": False, "external": True, "internalOnly": False, "internalKeyId": None},
    },
    "field-topics": {
        "id": "field-topics",
        "name": "Topics",
        "type": "ARRAY",
        "presence": "DYNAMIC",
        "prompt": "List up to three one- or two-word topics the scene is about.",
        "defaultValue": "<List of topics>",
        "exampleValues": [
            '["budget", "deadline"]',
            '["art", "exhibition"]',
            '["history", "mystery"]',
        ],
        "nestedFields": {},
        "metadata": {"internal": False, "external": True, "internalOnly": False, "internalKeyId": None},
    },
    "field-characters-present": {
        "id": "field-characters-present",
        "name": "CharactersPresent",
        "type": "ARRAY",
        "presence": "DYNAMIC",
        "prompt": "List all characters currently present in an array format.",
        "defaultValue": "<List of characters present if changed>",
        "exampleValues": [
            '["Emma Thompson", "James Miller"]',
            '["Sophia Rodriguez", "Ethan Brown"]',
            '["Liam Davis", "Olivia Martinez"]',
        ],
        "nestedFields": {},
        "metadata": {"internal": False, "external": True, "internalOnly": False, "internalKeyId": None},
    },
    "field-characters": {
        "id": "field-characters",
        "name": "Characters",
        "type": "FOR_EACH_OBJECT",
        "presence": "DYNAMIC",
        "prompt": "For each character, update the following details:",
        "defaultValue": "<Character Name>",
        "exampleValues": [
            '["Emma Thompson", "James Miller"]',
            '["Sophia Rodriguez", "Ethan Brown"]',
            '["Liam Davis", "Olivia Martinez"]',
        ],
        "nestedFields": {
            "field-hair": {
                "id": "field-hair",
                "name": "Hair",
                "type": "STRING",
                "presence": "DYNAMIC",
                "prompt": "Describe style only.",
                "defaultValue": "<Updated hair description if changed>",
                "exampleValues": [
                    '["Shoulder-length blonde hair, styled straight", "Short black hair, neatly combed"]',
                    '["Long curly brown hair, pulled back into a low bun", "Short wavy black hair, slightly tousled"]',
                ],
                "nestedFields": {},
                "metadata": {"internal": False, "external": True, "internalOnly": False, "internalKeyId": None},
            },
            "field-makeup": {
                "id": "field-makeup",
                "name": "Makeup",
                "type": "STRING",
                "presence": "DYNAMIC",
                "prompt": "Describe current makeup.",
                "defaultValue": "<Updated makeup if changed>",
                "exampleValues": [
                    '["Natural look with light foundation and mascara", "None"]',
                    '["Bold red lipstick and winged eyeliner", "None"]',
                ],
                "nestedFields": {},
                "metadata": {"internal": False, "external": True, "internalOnly": False, "internalKeyId": None},
            },
            "field-outfit": {
                "id": "field-outfit",
                "name": "Outfit",
                "type": "STRING",
                "presence": "DYNAMIC",
                "prompt": "List the complete outfit, including underwear and accessories, even if not visible.",
                "defaultValue": "<Full outfit description, even if removed>",
                "exampleValues": [
                    '["Navy blue blazer over white silk blouse; Gray pencil skirt; Black leather belt", "Dark gray suit; Light blue dress shirt; Navy tie"]',
                    '["Black cocktail dress with a sweetheart neckline; Silver hoop earrings", "Black slacks; Charcoal sweater"]',
                ],
                "nestedFields": {},
                "metadata": {"internal": False, "external": True, "internalOnly": False, "internalKeyId": None},
            },
            "field-state-of-dress": {
                "id": "field-state-of-dress",
                "name": "StateOfDress",
                "type": "STRING",
                "presence": "DYNAMIC",
                "prompt": "Describe how put-together or disheveled the character appears.",
                "defaultValue": "<Current state of dress if no update is needed>",
                "exampleValues": [
                    '["Professionally dressed, neat appearance", "Professionally dressed, attentive"]',
                    '["Dressed for a formal event, hair slightly tousled", "Casually dressed, relaxed"]',
                ],
                "nestedFields": {},
                "metadata": {"internal": False, "external": True, "internalOnly": False, "internalKeyId": None},
            },
            "field-posture": {
                "id": "field-posture",
                "name": "PostureAndInteraction",
                "type": "STRING",
                "presence": "DYNAMIC",
                "prompt": "Describe physical posture, position relative to others or objects, and interactions.",
                "defaultValue": "<Current posture and interaction if no update is needed>",
                "exampleValues": [
                    '["Standing at the head of the table, presenting slides", "Sitting at the table, taking notes"]',
                    '["Standing by the painting, gesturing towards it", "Leaning against the wall, arms crossed"]',
                ],
                "nestedFields": {},
                "metadata": {"internal": False, "external": True, "internalOnly": False, "internalKeyId": None},
            },
        },
        "metadata": {"internal": False, "external": True, "internalOnly": False, "internalKeyId": None},
    },
    "field-inventory": {
        "id": "field-inventory",
        "name": "Inventory",
        "type": "FOR_EACH_ARRAY",
        "presence": "STATIC",
        "prompt": "For each character, list notable items they carry.",
        "defaultValue": "<Character Name>",
        "exampleValues": [
            '["Emma Thompson", "James Miller"]',
        ],
        "nestedFields": {
            "field-inventory-item": {
                "id": "field-inventory-item",
                "name": "Item",
                "type": "STRING",
                "presence": "STATIC",
                "prompt": "One item per entry.",
                "defaultValue": "<Item>",
                "exampleValues": [
                    '["Leather briefcase", "Company badge"]',
                ],
                "nestedFields": {},
                "metadata": {"internal": False, "external": True, "internalOnly": False, "internalKeyId": None},
            },
        },
        "metadata": {"internal": False, "external": True, "internalOnly": False, "internalKeyId": None},
    },
    "field-story-events": {
        "id": "field-story-events",
        "name": "StoryEvents",
        "type": "OBJECT",
        "presence": "DYNAMIC",
        "prompt": "Record lifecycle events that happened in this message. Use None when nothing happened.",
        "defaultValue": "",
        "exampleValues": [],
        "nestedFields": {
            "field-birth-events": {
                "id": "field-birth-events",
                "name": "BirthEvents",
                "type": "FOR_EACH_OBJECT",
                "presence": "DYNAMIC",
                "prompt": "Characters born in this message, keyed by name.",
                "defaultValue": "None",
                "exampleValues": [],
                "nestedFields": {
                    "field-newborn-description": {
                        "id": "field-newborn-description",
                        "name": "NewBornDescription",
                        "type": "STRING",
                        "presence": "DYNAMIC",
                        "prompt": "Short description of the newborn.",
                        "defaultValue": "",
                        "exampleValues": [],
                        "nestedFields": {},
                        "metadata": {"internal": False, "external": True, "internalOnly": False, "internalKeyId": None},
                    },
                },
                "metadata": {"internal": False, "external": True, "internalOnly": False, "internalKeyId": None},
            },
            "field-growth-events": {
                "id": "field-growth-events",
                "name": "GrowthEvents",
                "type": "FOR_EACH_OBJECT",
                "presence": "DYNAMIC",
                "prompt": "Characters who came of age or changed life stage, keyed by name.",
                "defaultValue": "None",
                "exampleValues": [],
                "nestedFields": {
                    "field-growth-description": {
                        "id": "field-growth-description",
                        "name": "GrowthDescription",
                        "type": "STRING",
                        "presence": "DYNAMIC",
                        "prompt": "What changed.",
                        "defaultValue": "",
                        "exampleValues": [],
                        "nestedFields": {},
                        "metadata": {"internal": False, "external": True, "internalOnly": False, "internalKeyId": None},
                    },
                },
                "metadata": {"internal": False, "external": True, "internalOnly": False, "internalKeyId": None},
            },
            "field-death-events": {
                "id": "field-death-events",
                "name": "DeathEvents",
                "type": "FOR_EACH_OBJECT",
                "presence": "DYNAMIC",
                "prompt": "Characters who died in this message, keyed by name.",
                "defaultValue": "None",
                "exampleValues": [],
                "nestedFields": {
                    "field-death-cause": {
                        "id": "field-death-cause",
                        "name": "DeathCauseDescription",
                        "type": "STRING",
                        "presence": "DYNAMIC",
                        "prompt": "Cause of death.",
                        "defaultValue": "",
                        "exampleValues": [],
                        "nestedFields": {},
                        "metadata": {"internal": False, "external": True, "internalOnly": False, "internalKeyId": None},
                    },
                },
                "metadata": {"internal": False, "external": True, "internalOnly": False, "internalKeyId": None},
            },
        },
        "metadata": {"internal": False, "external": True, "internalOnly": False, "internalKeyId": None},
    },
    "field-time-anchor": {
        "id": "field-time-anchor",
        "name": "TimeAnchor",
        "type": "STRING",
        "presence": "DYNAMIC",
        "prompt": "ISO-8601 timestamp of the current in-story moment.",
        "defaultValue": "",
        "exampleValues": ['"2024-10-16T09:15:30Z"'],
        "nestedFields": {},
        "metadata": {"internal": True, "external": False, "internalOnly": True, "internalKeyId": "timeAnchor"},
    },
    "field-time-analysis": {
        "id": "field-time-analysis",
        "name": "TimeAnalysis",
        "type": "OBJECT",
        "presence": "STATIC",
        "prompt": "",
        "defaultValue": "",
        "exampleValues": [],
        "nestedFields": {
            "field-iso-timestamp": {
                "id": "field-iso-timestamp",
                "name": "IsoTimestamp",
                "type": "STRING",
                "presence": "STATIC",
                "prompt": "",
                "defaultValue": "",
                "exampleValues": [],
                "nestedFields": {},
                "metadata": {"internal": True, "external": False, "internalOnly": True, "internalKeyId": None},
            },
            "field-elapsed-seconds": {
                "id": "field-elapsed-seconds",
                "name": "ElapsedSeconds",
                "type": "STRING",
                "presence": "STATIC",
                "prompt": "",
                "defaultValue": "",
                "exampleValues": [],
                "nestedFields": {},
                "metadata": {"internal": True, "external": False, "internalOnly": True, "internalKeyId": None},
            },
        },
        "metadata": {"internal": True, "external": False, "internalOnly": True, "internalKeyId": "timeAnalysis"},
    },
}


def get_default_schema() -> TrackerSchema:
    """Return a freshly loaded copy of the built-in definition."""
    return load_schema(copy.deepcopy(DEFAULT_TRACKER_DEFINITION))
