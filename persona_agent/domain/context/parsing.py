from typing import Dict, List, Any, Optional, Union
import json
import re

import structlog

logger = structlog.get_logger(__name__)


JSON_BLOCK_PATTERN = re.compile(r"```json\n([\s\S]*?)\n```")
ARRAY_PATTERN = re.compile(r"\[\s*{[\s\S]*?}\s*\]")
OBJECT_PATTERN = re.compile(r"{[\s\S]*?}")
TEMPLATE_KEY_PATTERN = re.compile(r"\{\{(\w+)\}\}")

SHOULD_RESPOND_OPTIONS = ("RESPOND", "IGNORE", "STOP")

message_completion_footer = """
Response format should be formatted in a JSON block like this:
```json
{ "user": "{{agentName}}", "text": string, "action": "string" }
```"""

should_respond_footer = """The available options are [RESPOND], [IGNORE], or [STOP]. Choose the most appropriate option.
If {{agentName}} is talking too much, you can choose [IGNORE]

Your response must include one of the options."""

boolean_footer = "Respond with a YES or a NO."

string_array_footer = """Respond with a JSON array containing the values in a JSON block formatted for markdown with this structure:
```json
[
  'value',
  'value'
]
```

Your response must include the JSON block."""


def parse_should_respond_from_text(text: str) -> Optional[str]:
    """Read a RESPOND / IGNORE / STOP decision out of a model reply"""

    first_line = text.split("\n")[0].strip().replace("[", "").replace("]", "").upper()
    if first_line in SHOULD_RESPOND_OPTIONS:
        return first_line

    for option in SHOULD_RESPOND_OPTIONS:
        if option in text:
            return option
    return None


def parse_boolean_from_text(text: str) -> Optional[bool]:
    """YES -> True, NO -> False, anything else -> None"""

    answer = text.strip().upper()
    if answer == "YES":
        return True
    if answer == "NO":
        return False
    return None


def _load_json(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        logger.error("Error parsing JSON", error=str(e), raw=raw[:200])
        return None


def parse_json_array_from_text(text: str) -> Optional[List[Any]]:
    """Extract a JSON array from a fenced ```json block or the first [ {...} ] span"""

    data = None
    block = JSON_BLOCK_PATTERN.search(text)
    if block:
        data = _load_json(block.group(1))
    else:
        match = ARRAY_PATTERN.search(text)
        if match:
            data = _load_json(match.group(0))

    if isinstance(data, list):
        return data
    return None


def parse_json_object_from_text(text: str) -> Optional[Union[Dict[str, Any], List[Any]]]:
    """Extract a JSON object from a fenced ```json block or the first {...} span.

    A fenced block holding an array is handed to the array parser, so callers
    may receive a list here.
    """

    data = None
    block = JSON_BLOCK_PATTERN.search(text)
    if block:
        data = _load_json(block.group(1))
    else:
        match = OBJECT_PATTERN.search(text)
        if match:
            data = _load_json(match.group(0))

    if isinstance(data, dict):
        return data
    if isinstance(data, list):
        return parse_json_array_from_text(text)
    return None


def compose_context(state: Dict[str, Any], template: str) -> str:
    """Fill every {{key}} in the template from state; unknown keys become empty"""

    def _substitute(match: re.Match) -> str:
        value = state.get(match.group(1))
        if value is None:
            return ""
        return str(value)

    return TEMPLATE_KEY_PATTERN.sub(_substitute, template)


def add_header(header: str, body: str) -> str:
    if not body:
        return ""
    return f"{header}\n{body}\n" if header else f"{body}\n"
