"""
core/rating.py -- Comment rating value codec.

A rating is a small integer serialized for humans as "<value> из <max>",
e.g. "4 из 5". Two layers:

  format_rating / parse_rating  -- the bare text form ("4 из 5")
  encode_rating / decode_rating -- the same text as a JSON string literal
                                   ('"4 из 5"'), for raw JSON embedding

Parsing is strict: exactly three single-space separated tokens, the literal
connector word in the middle, and a plain decimal integer first. Anything
else raises InvalidRatingFormat.

Known gap: the lower bound is not checked, so "-1 из 5" decodes to -1.
tests/test_rating.py pins this behaviour.
"""

from __future__ import annotations

import json
import re

from core.errors import InvalidRatingFormat

MAX_RATING = 5
CONNECTOR = "из"

# Optional sign, ASCII digits only. int() alone would also accept
# surrounding whitespace, underscores and non-ASCII digits.
_INTEGER_RE = re.compile(r"[+-]?[0-9]+")
_INT32_MIN = -(2**31)


def format_rating(value: int) -> str:
    return f"{int(value)} {CONNECTOR} {MAX_RATING}"


def parse_rating(text: str) -> int:
    """Parse the bare text form into an integer rating."""
    parts = text.split(" ")
    if len(parts) != 3 or parts[1] != CONNECTOR:
        raise InvalidRatingFormat()
    if _INTEGER_RE.fullmatch(parts[0]) is None:
        raise InvalidRatingFormat()
    value = int(parts[0])
    if value > MAX_RATING or value < _INT32_MIN:
        raise InvalidRatingFormat()
    return value


def encode_rating(value: int) -> str:
    """Return the rating as a quoted JSON string literal, non-ASCII kept verbatim."""
    return json.dumps(format_rating(value), ensure_ascii=False)


def decode_rating(raw: str | bytes) -> int:
    """Decode a quoted JSON string literal produced by encode_rating().

    Raises InvalidRatingFormat if the input is not a JSON string literal or
    its content does not match the rating shape.
    """
    try:
        text = json.loads(raw)
    except (ValueError, TypeError) as exc:
        raise InvalidRatingFormat() from exc
    if not isinstance(text, str):
        raise InvalidRatingFormat()
    return parse_rating(text)
