from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from sheet_insight.cells import is_blank, is_date_like, is_numeric_like, stringify

DATE = "date"
NUMBER = "number"
CATEGORY = "category"
TEXT = "text"
ID = "id"
COLUMN_TYPES = (DATE, NUMBER, CATEGORY, TEXT, ID)

DATE_RATIO_THRESHOLD = 0.7
NUMBER_RATIO_THRESHOLD = 0.7
CATEGORY_MAX_DISTINCT = 50
CATEGORY_MAX_DISTINCT_RATIO = 0.3
ID_MIN_VALUES = 5


@dataclass(frozen=True)
class ColumnProfile:
    non_empty_count: int
    date_ratio: float
    number_ratio: float
    distinct_count: int
    detected_type: str


def category_limit(non_empty_count: int) -> float:
    return min(CATEGORY_MAX_DISTINCT, CATEGORY_MAX_DISTINCT_RATIO * non_empty_count)


def normalized_key(value: Any) -> str:
    return stringify(value).strip().upper()


def profile_column(values: Iterable[Any]) -> ColumnProfile:
    non_empty = [value for value in values if not is_blank(value)]
    count = len(non_empty)
    if count == 0:
        return ColumnProfile(0, 0.0, 0.0, 0, TEXT)

    date_ratio = sum(1 for value in non_empty if is_date_like(value)) / count
    number_ratio = sum(1 for value in non_empty if is_numeric_like(value)) / count
    distinct = len({normalized_key(value) for value in non_empty})

    if date_ratio > DATE_RATIO_THRESHOLD:
        detected = DATE
    elif number_ratio > NUMBER_RATIO_THRESHOLD:
        detected = NUMBER
    elif distinct <= category_limit(count):
        detected = CATEGORY
    elif distinct == count and count > ID_MIN_VALUES:
        detected = ID
    else:
        detected = TEXT
    return ColumnProfile(count, date_ratio, number_ratio, distinct, detected)


def detect_column_type(values: Iterable[Any]) -> str:
    return profile_column(values).detected_type
