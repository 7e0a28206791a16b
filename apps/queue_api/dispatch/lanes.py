from __future__ import annotations

from enum import Enum
from typing import Mapping

from .errors import InvalidPriorityError
from .state import Lane


class PriorityCategory(str, Enum):
    """Raw priority categories a citizen can pick on the ticket form."""

    REGULAR = "Regular"
    SENIOR_PWD_PREGNANT = "Senior/PWD/Pregnant"


class LaneClassifier:
    """Map a submitted priority category to exactly one lane.

    Matching ignores case and surrounding whitespace because kiosks submit the
    category lowercased. Unknown categories are rejected rather than defaulted.
    """

    _DEFAULT_LANES: Mapping[PriorityCategory, Lane] = {
        PriorityCategory.REGULAR: Lane.REGULAR,
        PriorityCategory.SENIOR_PWD_PREGNANT: Lane.PRIORITY,
    }

    def __init__(self, lanes: Mapping[PriorityCategory, Lane] | None = None) -> None:
        self._lanes = lanes or self._DEFAULT_LANES
        self._lookup = {category.value.casefold(): category for category in self._lanes}

    def parse(self, raw: str | PriorityCategory) -> PriorityCategory:
        if isinstance(raw, PriorityCategory):
            return raw
        key = str(raw or "").strip().casefold()
        category = self._lookup.get(key)
        if category is None:
            raise InvalidPriorityError(f"Unrecognised priority category: {raw!r}")
        return category

    def classify(self, raw: str | PriorityCategory) -> Lane:
        return self._lanes[self.parse(raw)]
