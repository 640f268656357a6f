from __future__ import annotations

import locale
from dataclasses import dataclass
from typing import Any, List, Sequence

from reports import Bucket


SORT_KEYS = ("revenue", "profit", "bucketKey", "secondaryKey")

_NUMERIC_KEYS = {"revenue": "revenue", "profit": "profit"}
_TEXT_KEYS = {"bucketKey": "key", "secondaryKey": "secondary_key"}


@dataclass(frozen=True)
class SortSpec:
    key: str = "revenue"
    direction: str = "desc"

    def toggled(self, key: str) -> "SortSpec":
        """Clicking the active key flips desc to asc; any other key starts at desc."""
        if key == self.key and self.direction == "desc":
            return SortSpec(key, "asc")
        return SortSpec(key, "desc")


@dataclass(frozen=True)
class MergeSpan:
    is_first_of_run: bool
    run_length: int


def _text_sort_key(value: str) -> Any:
    """Case-insensitive key collated by the process LC_COLLATE locale."""
    return locale.strxfrm(value.casefold())


def sort_buckets(buckets: Sequence[Bucket], spec: SortSpec) -> List[Bucket]:
    """Stable sort; buckets with equal keys keep their incoming order."""
    descending = spec.direction != "asc"
    if spec.key in _TEXT_KEYS:
        attr = _TEXT_KEYS[spec.key]
        return sorted(buckets, key=lambda bucket: _text_sort_key(getattr(bucket, attr)), reverse=descending)
    attr = _NUMERIC_KEYS.get(spec.key, "revenue")
    return sorted(buckets, key=lambda bucket: getattr(bucket, attr), reverse=descending)


def merge_spans(buckets: Sequence[Bucket]) -> List[MergeSpan]:
    """
    Run-lengths of equal secondary keys between adjacent rows.

    Only adjacency counts: a secondary key whose rows are separated by another
    key forms two runs.
    """
    spans: List[MergeSpan] = []
    index = 0
    while index < len(buckets):
        current = buckets[index].secondary_key
        count = 1
        while index + count < len(buckets) and buckets[index + count].secondary_key == current:
            count += 1
        spans.append(MergeSpan(True, count))
        spans.extend(MergeSpan(False, 0) for _ in range(count - 1))
        index += count
    return spans


def plan(buckets: Sequence[Bucket], spec: SortSpec) -> tuple[List[Bucket], List[MergeSpan]]:
    ordered = sort_buckets(buckets, spec)
    return ordered, merge_spans(ordered)
