"""
ThesisMaster Backend - Chapter Pricing Calculator
==================================================

What:  Turns a chapter's target word count, academic level, work type and
       urgency into a price quote (a PricingSnapshot).
How:   pages = ceil(words / words_per_page), base = pages × price_per_page,
       total = base × urgency × level × work type, evaluated in Decimal and
       rounded half-up to a whole currency unit.
Who:   chapter_service (create/update), the /api/pricing/quote route.

Multiplier tables:
    urgency:   normal 1   urgent 1.5   very_urgent 2
    level:     masters 1  phd 1.3
    work type: coursework 1  revision 0.8  statistics 1.4

Unknown or missing values fall back to a multiplier of 1.
"""

import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from thesismaster.domain.enums import AcademicLevel, Urgency, WorkType
from thesismaster.exceptions import ValidationError

DEFAULT_PRICE_PER_PAGE = 400
DEFAULT_WORDS_PER_PAGE = 250
DEFAULT_CURRENCY = "KSH"

URGENCY_MULTIPLIERS: Mapping[str, Decimal] = {
    Urgency.NORMAL.value: Decimal("1"),
    Urgency.URGENT.value: Decimal("1.5"),
    Urgency.VERY_URGENT.value: Decimal("2"),
}

LEVEL_MULTIPLIERS: Mapping[str, Decimal] = {
    AcademicLevel.MASTERS.value: Decimal("1"),
    AcademicLevel.PHD.value: Decimal("1.3"),
}

WORK_TYPE_MULTIPLIERS: Mapping[str, Decimal] = {
    WorkType.COURSEWORK.value: Decimal("1"),
    WorkType.REVISION.value: Decimal("0.8"),
    WorkType.STATISTICS.value: Decimal("1.4"),
}

EnumInput = Optional[Union[str, Enum]]


@dataclass(frozen=True)
class PricingSnapshot:
    """
    Immutable price quote persisted on the chapter.

    Two quotes computed from the same inputs compare equal.
    """

    currency: str
    price_per_page: int
    pages: int
    base_price: int
    urgency_multiplier: float
    level_multiplier: float
    work_type_multiplier: float
    multiplier: float
    total_price: int

    def to_dict(self) -> Dict[str, Any]:
        """JSON form stored in chapters.pricing and returned by the API."""
        return {
            "currency": self.currency,
            "pricePerPage": self.price_per_page,
            "pages": self.pages,
            "basePrice": self.base_price,
            "urgencyMultiplier": self.urgency_multiplier,
            "levelMultiplier": self.level_multiplier,
            "workTypeMultiplier": self.work_type_multiplier,
            "multiplier": self.multiplier,
            "totalPrice": self.total_price,
        }


def _key(value: EnumInput) -> Optional[str]:
    if isinstance(value, Enum):
        return value.value
    return value


def _lookup(table: Mapping[str, Decimal], value: EnumInput) -> Decimal:
    return table.get(_key(value), Decimal("1"))


def count_pages(target_word_count: int, words_per_page: int = DEFAULT_WORDS_PER_PAGE) -> int:
    """Pages needed for a word count; partial pages count as whole pages."""
    if target_word_count is None or target_word_count < 0:
        raise ValidationError(
            "target_word_count must be zero or greater", field="target_word_count"
        )
    return math.ceil(target_word_count / words_per_page)


def count_words(text: Optional[str]) -> int:
    """Number of non-empty whitespace-separated tokens."""
    if not text:
        return 0
    return len(text.split())


def calculate_pricing(
    target_word_count: int,
    level: EnumInput = None,
    work_type: EnumInput = None,
    urgency: EnumInput = None,
    price_per_page: int = DEFAULT_PRICE_PER_PAGE,
    words_per_page: int = DEFAULT_WORDS_PER_PAGE,
    currency: str = DEFAULT_CURRENCY,
) -> PricingSnapshot:
    """
    Computes the price quote for a chapter.

    Args:
        target_word_count: Planned length of the chapter; must be >= 0.
        level:             masters | phd
        work_type:         coursework | revision | statistics
        urgency:           normal | urgent | very_urgent
        price_per_page:    Rate per page in `currency`.
        words_per_page:    Page size used to derive the page count.

    Returns:
        PricingSnapshot

    Raises:
        ValidationError: If target_word_count is negative.

    Example:
        >>> calculate_pricing(2000, "phd", "statistics", "urgent").total_price
        8736
    """
    pages = count_pages(target_word_count, words_per_page)
    base_price = pages * price_per_page

    urgency_m = _lookup(URGENCY_MULTIPLIERS, urgency)
    level_m = _lookup(LEVEL_MULTIPLIERS, level)
    work_type_m = _lookup(WORK_TYPE_MULTIPLIERS, work_type)
    multiplier = urgency_m * level_m * work_type_m

    total = (Decimal(base_price) * multiplier).quantize(Decimal("1"), rounding=ROUND_HALF_UP)

    return PricingSnapshot(
        currency=currency,
        price_per_page=price_per_page,
        pages=pages,
        base_price=base_price,
        urgency_multiplier=float(urgency_m),
        level_multiplier=float(level_m),
        work_type_multiplier=float(work_type_m),
        multiplier=float(multiplier),
        total_price=int(total),
    )
