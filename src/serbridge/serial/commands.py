"""
Parsing of write payloads into command steps.

A payload is either a single string, possibly holding several lines, or a
sequence of lines. Blank lines are dropped and a line of the form
``__sleep N`` pauses the write for N milliseconds.
"""

import re
from dataclasses import dataclass
from typing import Iterable, Union

from serbridge.core.exceptions import InvalidPayload

SLEEP_DIRECTIVE = re.compile(r"^__sleep\s+(\d+)$")
LINE_SPLIT = re.compile(r"[\r\n]")


@dataclass(frozen=True)
class Line:
    """A command line to send to the device."""

    text: str

    def encode(self, encoding: str = "utf-8") -> bytes:
        return (self.text + "\n").encode(encoding)


@dataclass(frozen=True)
class Sleep:
    """A pause between command lines."""

    ms: int

    @property
    def seconds(self) -> float:
        return self.ms / 1000.0


Step = Union[Line, Sleep]


def parse_payload(payload: Union[str, Iterable[str]], max_sleep_ms: int) -> list[Step]:
    """
    Split a write payload into an ordered list of steps.

    Args:
        payload: Command string (newline separated) or sequence of lines
        max_sleep_ms: Longest pause a sleep directive may request

    Returns:
        Steps in input order, blank lines removed

    Raises:
        InvalidPayload: If a sleep directive exceeds max_sleep_ms
    """
    if isinstance(payload, str):
        raw_lines = LINE_SPLIT.split(payload)
    else:
        raw_lines = []
        for item in payload:
            raw_lines.extend(LINE_SPLIT.split(item))

    steps: list[Step] = []
    for raw in raw_lines:
        if not raw:
            continue
        match = SLEEP_DIRECTIVE.match(raw)
        if match:
            ms = int(match.group(1))
            if ms > max_sleep_ms:
                raise InvalidPayload(
                    f"Sleep of {ms}ms exceeds the {max_sleep_ms}ms maximum"
                )
            steps.append(Sleep(ms))
        else:
            steps.append(Line(raw))
    return steps
