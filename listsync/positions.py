"""Fractional indexing for list positions.

Positions are lowercase strings compared lexicographically. A new position
can always be generated between two neighbours (or before the first / after
the last item) without renumbering anything else.

Generated keys never end in "a": a key ending in the alphabet's first letter
leaves no room directly below it.
"""

import math
import re

BASE_CHARS = "abcdefghijklmnopqrstuvwxyz"
FIRST_CHAR = BASE_CHARS[0]
LAST_CHAR = BASE_CHARS[-1]
MID_CHAR = BASE_CHARS[len(BASE_CHARS) // 2]

# Initial positions use "c".."x" to leave headroom at both ends
_INITIAL_START = 2
_INITIAL_END = 23

_POSITION_RE = re.compile(r"^[a-z]+$")


def is_valid_position(pos: object) -> bool:
    """Return True if pos is a non-empty string over the position alphabet."""
    return isinstance(pos, str) and bool(_POSITION_RE.match(pos))


def _require_valid(pos: str) -> None:
    if not is_valid_position(pos):
        raise ValueError(f"Invalid position key: {pos!r}")


def generate_between(before: str | None, after: str | None) -> str:
    """Generate a position strictly between two positions.

    Args:
        before: Lower neighbour, or None to insert at the head.
        after: Upper neighbour, or None to insert at the tail.

    Returns:
        A key with before < key < after (open ends unbounded).

    Raises:
        ValueError: If a bound is malformed, before >= after, or no key
            over the alphabet fits between the bounds.
    """
    if not before and not after:
        return MID_CHAR

    if not before:
        _require_valid(after)
        return _decrement(after)

    if not after:
        _require_valid(before)
        return _increment(before)

    _require_valid(before)
    _require_valid(after)
    if before >= after:
        raise ValueError(f"Position {before!r} must sort before {after!r}")
    return _midpoint(before, after)


def _decrement(pos: str) -> str:
    """Generate a position before pos."""
    stripped = pos.rstrip(FIRST_CHAR)
    if not stripped:
        raise ValueError(f"No position sorts before {pos!r}")
    if stripped != pos:
        # A proper prefix sorts before every extension of it
        return stripped

    char_index = BASE_CHARS.index(pos[-1])
    if char_index > 1:
        return pos[:-1] + BASE_CHARS[char_index // 2]

    # "b": nothing fits between "a" and "b" at this depth, go one deeper
    return pos[:-1] + FIRST_CHAR + MID_CHAR


def _increment(pos: str) -> str:
    """Generate a position after pos."""
    char_index = BASE_CHARS.index(pos[-1])
    last_index = len(BASE_CHARS) - 1

    if char_index < last_index - 1:
        mid_index = char_index + (last_index - char_index + 1) // 2
        return pos[:-1] + BASE_CHARS[mid_index]
    if char_index == last_index - 1:
        return pos[:-1] + LAST_CHAR
    return pos + MID_CHAR


def _midpoint(before: str, after: str) -> str:
    """Generate a position between two ordered, distinct positions."""
    width = max(len(before), len(after))
    before_padded = before.ljust(width, FIRST_CHAR)
    after_padded = after.ljust(width, FIRST_CHAR)

    diff_index = next(
        (i for i in range(width) if before_padded[i] != after_padded[i]), None
    )
    if diff_index is None:
        # e.g. "n" and "na": only characters below "a" would fit
        raise ValueError(f"No position exists between {before!r} and {after!r}")

    before_idx = BASE_CHARS.index(before_padded[diff_index])
    after_idx = BASE_CHARS.index(after_padded[diff_index])

    if after_idx - before_idx > 1:
        mid_idx = before_idx + (after_idx - before_idx) // 2
        return before_padded[:diff_index] + BASE_CHARS[mid_idx]

    # Adjacent characters. Anything starting with the prefix sorts below
    # after; it only has to land above before.
    prefix = before_padded[: diff_index + 1]
    if len(before) > diff_index + 1:
        return _increment(before)
    return prefix + MID_CHAR


def _encode(value: int, digits: int) -> str:
    chars = []
    for _ in range(digits):
        value, digit = divmod(value, len(BASE_CHARS))
        chars.append(BASE_CHARS[digit])
    return "".join(reversed(chars)).rstrip(FIRST_CHAR)


def initial_positions(count: int) -> list[str]:
    """Generate evenly spaced, strictly increasing positions for count items.

    Up to 22 items get single characters from "c" to "x". Larger lists use
    multi-character keys spread over the same range.
    """
    if count <= 0:
        return []
    if count == 1:
        return [MID_CHAR]

    single_char_slots = _INITIAL_END - _INITIAL_START + 1
    if count <= single_char_slots:
        step = (_INITIAL_END - _INITIAL_START) / (count - 1)
        # round half up; step >= 1 keeps the characters distinct
        return [
            BASE_CHARS[int(_INITIAL_START + step * i + 0.5)] for i in range(count)
        ]

    base = len(BASE_CHARS)
    digits = max(2, math.ceil(math.log(count * 2) / math.log(base)) + 1)
    unit = base ** (digits - 1)
    low = _INITIAL_START * unit
    high = _INITIAL_END * unit

    return [
        _encode(low + (high - low) * i // (count - 1), digits) for i in range(count)
    ]
