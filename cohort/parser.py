"""Recover structured action calls from free-form model output.

The model is asked to answer with a small line-oriented format::

    action: addGoal
    thoughts: |
      I should write this down before I forget.
    goal: Ship v1

The first non-blank line names the action (``action:`` or ``name:``); every
following line is a ``key: value`` pair. A value of ``|`` opens a block whose
content is every following line indented two spaces past its key, up to the
first less-indented line. Blank lines inside a block are kept; the shared
indent is stripped.

``parse_action`` is a pure function of ``(registry, text)``. It never raises
for bad input; it returns either an :class:`Action` or a :class:`ParseError`
whose message tells the agent exactly how to fix its next response.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Mapping, Optional, Tuple, Union

from cohort.capabilities import ActionDefinition, CapabilityRegistry


CODE_BLOCK_DELIMITER = "```"
ACTION_KEYS = ("action", "name")
THOUGHTS_KEY = "thoughts"
BLOCK_MARKERS = ("|", "|-")
BLOCK_INDENT = 2

_FIELD_LINE = re.compile(
    r"^(?P<indent> *)(?P<key>[A-Za-z_][A-Za-z0-9_-]*):(?:[ \t]+(?P<value>.*?))?[ \t]*$"
)

FORMAT_EXAMPLE = "\n".join(
    [
        CODE_BLOCK_DELIMITER,
        "action: <action name>",
        "thoughts: <reasoning behind this action> (optional)",
        "<parameter name>: <parameter value>",
        "<multi-line parameter name>: |",
        "  <first line>",
        "  <second line>",
        CODE_BLOCK_DELIMITER,
    ]
)


class ParseErrorKind(str, Enum):
    MALFORMED_INPUT = "MalformedInput"
    UNKNOWN_ACTION = "UnknownAction"
    MISSING_PARAMETER = "MissingParameter"
    UNEXPECTED_PARAMETER = "UnexpectedParameter"


@dataclass(frozen=True)
class ParseError:
    """Why a response could not be turned into an action.

    ``message`` is written for the agent, not for an operator: it restates the
    valid options so the next response can be corrected without guesswork.
    """

    kind: ParseErrorKind
    message: str


@dataclass(frozen=True)
class Action:
    """A validated action call."""

    definition: ActionDefinition
    thoughts: Optional[str]
    parameters: Mapping[str, str] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.definition.name


ParseResult = Union[Action, ParseError]


class _MalformedInput(ValueError):
    """Internal signal; converted to a ParseError at the public boundary."""


def usage_text(definition: ActionDefinition) -> str:
    """Render the call format for one action."""
    lines = [
        "Usage:",
        "",
        CODE_BLOCK_DELIMITER,
        f"action: {definition.name}",
        "thoughts: <reasoning behind this action> (optional)",
    ]
    for name, spec in definition.parameters.items():
        suffix = "" if spec.required else " (optional)"
        lines.append(f"{name}: <{spec.description.lower()}>{suffix}")
    lines.append(CODE_BLOCK_DELIMITER)
    return "\n".join(lines)


def parse_action(registry: CapabilityRegistry, text: str) -> ParseResult:
    """Parse and validate ``text`` against ``registry``.

    Validation short-circuits in a fixed order: structure, action name,
    required parameters, unexpected parameters.
    """
    try:
        fields = _split_fields(text)
    except _MalformedInput as exc:
        return ParseError(
            ParseErrorKind.MALFORMED_INPUT,
            "Your action could not be parsed: "
            f"{exc} Remember to always format your entire response as an action, "
            f"like this:\n\n{FORMAT_EXAMPLE}",
        )

    (_, action_name), rest = fields[0], fields[1:]
    definition = registry.get(action_name)
    if definition is None:
        available = ", ".join(f"`{name}`" for name in registry.action_names())
        return ParseError(
            ParseErrorKind.UNKNOWN_ACTION,
            f"Unknown action `{action_name}`. The available actions are: {available}. "
            "Please pick one of these, as described in the introductory message.",
        )

    thoughts: Optional[str] = None
    parameters: dict[str, str] = {}
    for key, value in rest:
        if key == THOUGHTS_KEY:
            thoughts = value
        else:
            parameters[key] = value

    missing = [
        name for name in definition.required_parameters if not parameters.get(name, "").strip()
    ]
    if missing:
        return ParseError(
            ParseErrorKind.MISSING_PARAMETER,
            f"Missing required parameter{_plural(missing)} {_quoted(missing)} "
            f"for action `{definition.name}`. {usage_text(definition)}",
        )

    unexpected = [name for name in parameters if name not in definition.parameters]
    if unexpected:
        return ParseError(
            ParseErrorKind.UNEXPECTED_PARAMETER,
            f"Unexpected parameter{_plural(unexpected)} {_quoted(unexpected)} "
            f"for action `{definition.name}`. {usage_text(definition)}",
        )

    return Action(definition=definition, thoughts=thoughts, parameters=parameters)


# ============================================================================
# Line-oriented field splitter
# ============================================================================


def _split_fields(text: str) -> List[Tuple[str, str]]:
    """Split ``text`` into ordered ``(key, value)`` pairs.

    The first pair is always the action name. Raises ``_MalformedInput``
    describing the first structural problem found.
    """
    lines = _strip_code_fence(_trim_blank_lines(text.splitlines()))
    if not lines:
        raise _MalformedInput("the response was empty.")

    first = _FIELD_LINE.match(lines[0])
    if first is None or first.group("key") not in ACTION_KEYS:
        raise _MalformedInput(
            "the first line must name the action, as in `action: <action name>`."
        )
    base_indent = len(first.group("indent"))

    fields: List[Tuple[str, str]] = []
    seen: set[str] = set()
    index = 0
    while index < len(lines):
        line = lines[index]
        if not line.strip():
            index += 1
            continue

        match = _FIELD_LINE.match(line)
        if match is None or len(match.group("indent")) < base_indent:
            raise _MalformedInput(
                f"line {index + 1} (`{line.strip()}`) is not a `key: value` pair."
            )
        key = match.group("key")
        if len(match.group("indent")) > base_indent:
            raise _MalformedInput(
                f"line {index + 1} is indented, but the preceding value is not a block. "
                "Use `<name>: |` followed by lines indented two spaces for multi-line values."
            )
        if key in seen:
            raise _MalformedInput(f"`{key}` appears more than once.")
        seen.add(key)

        value = match.group("value") or ""
        index += 1
        if value in BLOCK_MARKERS or not value:
            block, index = _read_block(lines, index, base_indent + BLOCK_INDENT)
            value = block
        else:
            value = _unquote(value)
        fields.append((key, value))

    if not fields[0][1]:
        raise _MalformedInput("the action name is empty.")
    return fields


def _read_block(lines: List[str], start: int, indent: int) -> Tuple[str, int]:
    """Consume an indented block starting at ``start``.

    Returns the de-indented content and the index of the first line after it.
    Leading and trailing blank lines are not part of the content.
    """
    content: List[str] = []
    index = start
    while index < len(lines):
        line = lines[index]
        if line.strip():
            if _indent_of(line) < indent:
                break
            content.append(line[indent:].rstrip())
        else:
            content.append("")
        index += 1

    return "\n".join(_trim_blank_lines(content)), index


def _trim_blank_lines(lines: List[str]) -> List[str]:
    start, end = 0, len(lines)
    while start < end and not lines[start].strip():
        start += 1
    while end > start and not lines[end - 1].strip():
        end -= 1
    return lines[start:end]


def _strip_code_fence(lines: List[str]) -> List[str]:
    if (
        len(lines) >= 2
        and lines[0].strip().startswith(CODE_BLOCK_DELIMITER)
        and lines[-1].strip() == CODE_BLOCK_DELIMITER
    ):
        return _trim_blank_lines(lines[1:-1])
    return lines


def _indent_of(line: str) -> int:
    return len(line) - len(line.lstrip(" "))


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def _plural(items: List[str]) -> str:
    return "s" if len(items) > 1 else ""


def _quoted(items: List[str]) -> str:
    return ", ".join(f"`{item}`" for item in items)
