from __future__ import annotations

import math
import re
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Callable, Optional, Union

from flowgraph.schema import ValidationKind

EMAIL_PATTERN = re.compile(r"\S+@\S+\.\S+")
NON_DIGITS = re.compile(r"\D")
MIN_PHONE_DIGITS = 8

DATE_FORMATS = (
    "%d/%m/%Y", "%d/%m/%y", "%m/%d/%Y",
    "%Y/%m/%d", "%d-%m-%Y", "%d.%m.%Y",
    "%d/%m", "%Y-%m", "%Y",
    "%b %d %Y", "%d %b %Y", "%B %d %Y", "%d %B %Y", "%B %d, %Y",
)

DateParser = Callable[[str], Optional[datetime]]


def parse_date(text: str) -> Optional[datetime]:
    """Best-effort date parser: ISO 8601, RFC 2822 and common day/month layouts."""
    value = text.strip()
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        pass
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        pass
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    return None


def is_number(text: str) -> bool:
    value = text.strip()
    # A blank answer counts as zero, like the dashboard's Number("")
    if not value:
        return True
    try:
        return math.isfinite(float(value))
    except ValueError:
        return False


def validate_input(
    text: str,
    kind: Union[ValidationKind, str, None],
    date_parser: Optional[DateParser] = None,
) -> bool:
    """Check a reply against the step's validation kind"""
    kind = getattr(kind, "value", kind)
    if not kind or kind in (ValidationKind.NONE.value, ValidationKind.TEXT.value):
        return True

    if kind == ValidationKind.EMAIL.value:
        return EMAIL_PATTERN.search(text) is not None
    if kind == ValidationKind.PHONE.value:
        return len(NON_DIGITS.sub("", text)) >= MIN_PHONE_DIGITS
    if kind == ValidationKind.NUMBER.value:
        return is_number(text)
    if kind == ValidationKind.DATE.value:
        return (date_parser or parse_date)(text) is not None
    return True
