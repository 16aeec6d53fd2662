"""Decoding of packed line bitmaps and method markers into coverage ranges.

Bitmaps are byte strings in which bit *i* (least significant first) of byte
*k* stands for source line ``k * 8 + i + 1``.

Servers number lines of the compiled class, where every method declaration
occupies one line. Sources formatted with one formal parameter per line are
longer than that, so reported lines are shifted by an offset that grows with
each multi-line declaration.
"""

import re
from collections.abc import Iterator, Mapping, Sequence

from testing_manager.models.coverage import (
    DeclarationCoverage,
    MethodMarker,
    StatementCoverage,
)

METHOD_DECLARATION = re.compile(
    r"^(?:Class)?Method\s+(?P<name>[%\w]+|\"[^\"]+\")\s*\("
)


def unpack_lines(bitmap: bytes) -> Iterator[int]:
    """Yield the 1-based line numbers whose bits are set."""
    for index, byte in enumerate(bitmap):
        if not byte:
            continue
        for bit in range(8):
            if byte >> bit & 1:
                yield index * 8 + bit + 1


def bit_is_set(bitmap: bytes, line: int) -> bool:
    """Whether the bit for a 1-based line is set."""
    index, bit = divmod(line - 1, 8)
    return index < len(bitmap) and bool(bitmap[index] >> bit & 1)


def method_offsets(source_lines: Sequence[str]) -> Mapping[str, int]:
    """Compute each method's display offset from its source text.

    Walks declarations in order, counting the continuation lines of every
    formal parameter list that is split across lines. A method's offset is the
    total count up to and including its own declaration.
    """
    offsets: dict[str, int] = {}
    total = 0
    index = 0
    while index < len(source_lines):
        match = METHOD_DECLARATION.match(source_lines[index])
        if match is None:
            index += 1
            continue
        depth = _paren_depth(source_lines[index][match.end() - 1 :])
        while depth > 0 and index + 1 < len(source_lines):
            index += 1
            total += 1
            depth += _paren_depth(source_lines[index])
        offsets[match["name"].strip('"')] = total
        index += 1
    return offsets


def _paren_depth(text: str) -> int:
    depth = 0
    quoted = False
    for char in text:
        if char == '"':
            quoted = not quoted
        elif not quoted:
            if char == "(":
                depth += 1
            elif char == ")":
                depth -= 1
    return depth


def _offset_at(
    markers: Sequence[MethodMarker], offsets: Mapping[str, int]
) -> Iterator[tuple[int, int]]:
    """Yield `(first_line, offset)` for each marker in order."""
    active = 0
    for marker in markers:
        active = offsets.get(marker.method, active)
        yield marker.line, active


def decode_statements(
    executable: bytes,
    covered: bytes,
    markers: Sequence[MethodMarker] = (),
    offsets: Mapping[str, int] | None = None,
) -> Sequence[StatementCoverage]:
    """Produce one record per executable line.

    The covered flag is the matching bit of `covered`. With `offsets`, every
    line at or after a method's marker is shifted by that method's offset.
    """
    starts = list(_offset_at(sorted(markers, key=lambda m: m.line), offsets or {}))
    statements: list[StatementCoverage] = []
    cursor = 0
    shift = 0
    for line in unpack_lines(executable):
        while cursor < len(starts) and starts[cursor][0] <= line:
            shift = starts[cursor][1]
            cursor += 1
        statements.append(
            StatementCoverage(line=line + shift, covered=bit_is_set(covered, line))
        )
    return statements


def decode_declarations(
    markers: Sequence[MethodMarker],
    covered: bytes = b"",
    offsets: Mapping[str, int] | None = None,
) -> Sequence[DeclarationCoverage]:
    """Produce one range per method marker.

    Each range ends just before the next marker; the last one runs to the end
    of the file. A method counts as covered when any line of its range is.
    """
    ordered = sorted(markers, key=lambda m: m.line)
    starts = list(_offset_at(ordered, offsets or {}))
    declarations: list[DeclarationCoverage] = []
    for position, marker in enumerate(ordered):
        shift = starts[position][1]
        if position + 1 < len(ordered):
            end = ordered[position + 1].line - 1
            hit = any(bit_is_set(covered, line) for line in range(marker.line, end + 1))
            end_line: int | None = end + shift
        else:
            hit = any(line >= marker.line for line in unpack_lines(covered))
            end_line = None
        declarations.append(
            DeclarationCoverage(
                name=marker.method,
                start_line=marker.line + shift,
                end_line=end_line,
                covered=hit,
            )
        )
    return declarations
