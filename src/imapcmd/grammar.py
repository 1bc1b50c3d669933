"""Subject-line command grammar.

Rules are tried in table order and are independent of each other: a
subject such as ``scene evening water 10`` yields both a scene and a
water command. Adding a command means adding a row to ``RULES``.
"""

import re
from typing import Callable, NamedTuple

from .models import AlarmCommand, Command, FreeCommand, SceneCommand, SolarCommand, WaterCommand

REPLY_PREFIX = re.compile(r"^(?:(?:re|fwd?|aw|wg)\s*:\s*)+")
WHITESPACE = re.compile(r"\s+")

DEFAULT_WATER_MINUTES = 8


class Rule(NamedTuple):
    """A grammar row: pattern plus a builder returning a command or None."""

    name: str
    pattern: re.Pattern
    build: Callable[[re.Match], Command | None]


def normalize_subject(subject: str | None) -> str:
    """Case-fold a subject and strip reply/forward prefixes."""
    if not subject:
        return ""
    text = WHITESPACE.sub(" ", subject).strip().casefold()
    return REPLY_PREFIX.sub("", text).strip()


def _to_int(text: str | None) -> int | None:
    if text is None:
        return None
    try:
        return int(text)
    except ValueError:
        return None


def _scene(m: re.Match) -> Command | None:
    return SceneCommand(name=m.group(1))


def _solar(m: re.Match) -> Command | None:
    value = _to_int(m.group(2))
    if value is None:
        return None
    return SolarCommand(mode=m.group(1), value=value)


def _alarm(m: re.Match) -> Command | None:
    hours, minutes = int(m.group(1)), int(m.group(2))
    if hours > 23 or minutes > 59:
        return None
    return AlarmCommand(time=f"{hours:02d}:{minutes:02d}")


def _water(m: re.Match) -> Command | None:
    if m.group(1) is None:
        return WaterCommand(hold_minutes=DEFAULT_WATER_MINUTES)
    minutes = _to_int(m.group(1))
    if minutes is None or minutes < 1:
        return None
    return WaterCommand(hold_minutes=minutes)


def _free(m: re.Match) -> Command | None:
    return FreeCommand(date=m.group(1).strip())


RULES: tuple[Rule, ...] = (
    Rule("scene", re.compile(r"\bscene (\w+)"), _scene),
    Rule("solar", re.compile(r"\bsolar (charge|discharge) (\S+)"), _solar),
    Rule("alarm", re.compile(r"\balarm (\d{1,2}):(\d{2})\b"), _alarm),
    Rule("water", re.compile(r"\bwater\b(?:\s+(\S+))?"), _water),
    Rule("free", re.compile(r"^free\b(.*)$"), _free),
)


def parse_subject(subject: str | None, rules: tuple[Rule, ...] = RULES) -> list[Command]:
    """Return every command found in ``subject``, in rule order.

    The subject is normalized first. Each rule contributes at most one
    command, from its first occurrence whose captures make sense; an
    occurrence such as ``solar charge lots`` is passed over.
    """
    text = normalize_subject(subject)
    if not text:
        return []

    commands: list[Command] = []
    for rule in rules:
        for match in rule.pattern.finditer(text):
            command = rule.build(match)
            if command is not None:
                commands.append(command)
                break
    return commands
