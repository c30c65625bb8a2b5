"""
Edit-distance matching shared by reply suggestions and keyword triggers
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional

from pydantic import BaseModel


DEFAULT_SENSITIVITY = 2
SUGGESTION_MIN_LENGTH = 3


class CannedResponse(BaseModel):
    id: str = ""
    label: str
    text: str


@dataclass
class Suggestion:
    response: CannedResponse
    distance: int


def levenshtein_distance(a: str, b: str) -> int:
    """Minimum single-character insertions, deletions and substitutions turning a into b.

    matrix[i][j] is the distance between b[:i] and a[:j].
    """
    matrix: List[List[int]] = [[i] for i in range(len(b) + 1)]
    matrix[0] = list(range(len(a) + 1))

    for i in range(1, len(b) + 1):
        row = matrix[i]
        for j in range(1, len(a) + 1):
            if b[i - 1] == a[j - 1]:
                row.append(matrix[i - 1][j - 1])
            else:
                row.append(min(
                    matrix[i - 1][j - 1] + 1,  # substitution
                    row[j - 1] + 1,            # insertion
                    matrix[i - 1][j] + 1,      # deletion
                ))
    return matrix[len(b)][len(a)]


def suggest_reply(
    text: str,
    catalog: Iterable[CannedResponse],
    sensitivity: int = DEFAULT_SENSITIVITY,
    min_length: int = SUGGESTION_MIN_LENGTH,
) -> Optional[Suggestion]:
    """Closest canned response by label, if within ``sensitivity`` edits.

    Ties keep the first entry in catalog order.
    """
    if len(text) < min_length:
        return None

    needle = text.lower()
    best: Optional[Suggestion] = None
    for item in catalog:
        dist = levenshtein_distance(needle, item.label.lower())
        if dist > sensitivity:
            continue
        if best is None or dist < best.distance:
            best = Suggestion(response=item, distance=dist)
    return best


def fuzzy_contains(text: str, keyword: str, sensitivity: int = DEFAULT_SENSITIVITY) -> bool:
    """True when some run of words in ``text`` is within ``sensitivity`` edits of ``keyword``.

    Both sides are expected lower-cased. Keywords no longer than the
    sensitivity are never fuzzy-matched (any short word would match them).
    """
    keyword = keyword.strip()
    if not keyword or len(keyword) <= sensitivity:
        return False

    words = text.split()
    width = len(keyword.split())
    if not words or width == 0:
        return False

    for start in range(0, max(len(words) - width + 1, 1)):
        window = " ".join(words[start:start + width])
        if levenshtein_distance(window, keyword) <= sensitivity:
            return True
    return False
