"""
propvault.codec.text  ──  flat `key=value` text files.

Reading keeps source order and lifts the comment directly above a property
into its description. Writing emits properties in their recorded
`file_order` / `line_order`, so a file that went through the store comes
back out in the layout it was read from.
"""

from __future__ import annotations

import re
from typing import Iterable, List, NamedTuple, Sequence

from ..core.property import Property

COMMENT_MARKERS = ("#", "!")
_SEPARATOR = re.compile(r"[=:]")


class ParsedLine(NamedTuple):
    key: str
    value: str
    description: str | None
    line_number: int  # 1-based position in the source text
    line_order: int  # 0-based position among parsed properties


def _is_comment(stripped: str) -> bool:
    return stripped.startswith(COMMENT_MARKERS)


def parse(text: str) -> List[ParsedLine]:
    """
    Parse properties text into an ordered list.

    Blank lines and `#` / `!` comments are skipped. The key is everything
    before the first `=` or `:`, the value everything after, both trimmed.
    Lines without a separator (or with an empty key) are dropped silently.
    A comment is a property's description only if it is the nearest
    non-blank line above it.
    """
    parsed: List[ParsedLine] = []
    previous: str | None = None  # nearest non-blank line seen so far

    for number, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line:
            continue
        if _is_comment(line):
            previous = line
            continue

        above, previous = previous, line
        match = _SEPARATOR.search(line)
        if match is None:
            continue
        key = line[: match.start()].strip()
        if not key:
            continue
        value = line[match.end() :].strip()

        description = None
        if above is not None and _is_comment(above):
            description = above[1:].strip() or None

        parsed.append(ParsedLine(key, value, description, number, len(parsed)))

    return parsed


def to_properties(
    parsed: Iterable[ParsedLine],
    environment: str,
    component: str,
    *,
    environment_order: int | None = None,
    file_order: int | None = None,
) -> List[Property]:
    return [
        Property.new(
            environment,
            item.key,
            item.value,
            description=item.description,
            component=component,
            environment_order=environment_order,
            file_order=file_order,
            line_order=item.line_order,
        )
        for item in parsed
    ]


def _layout_key(prop: Property):
    # properties with a recorded position first, then the rest by key
    if prop.line_order is not None:
        return (0, prop.file_order or 0, prop.line_order, "")
    return (1, 0, 0, prop.key)


def serialize(properties: Sequence[Property]) -> str:
    """
    Render properties as text, one `key=value` per block.

    A non-empty description becomes a `# description` line right above its
    property, every property is followed by a blank line, and an extra
    blank line separates properties coming from different source files.
    """
    lines: List[str] = []
    last_file: int | None = None

    for prop in sorted(properties, key=_layout_key):
        if prop.file_order is not None and prop.file_order != last_file:
            if last_file is not None:
                lines.append("")
            last_file = prop.file_order
        if prop.description:
            lines.append(f"# {prop.description}")
        lines.append(f"{prop.key}={prop.value}")
        lines.append("")

    return "\n".join(lines)
