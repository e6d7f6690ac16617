from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .models import AnyRecord, Record, is_empty
from .validators import (
    EquipmentRecordValidator,
    GymRecordValidator,
    RecordValidator,
    split_sources,
)

logger = logging.getLogger(__name__)

HIGH_QUALITY = 0.8
MEDIUM_QUALITY = 0.5

# Cross-validation: a value is trusted once this many sources report it.
MIN_AGREEMENT = 2
CROSS_VALIDATED_CONFIDENCE_CAP = 0.9
AGREEMENT_SCORES = {"phone": 0.3, "open_hour": 0.2, "price": 0.3, "facilities": 0.2}
VOTED_FIELDS = ("phone", "open_hour", "close_hour", "price")


def merge_sources(*sources: str) -> str:
    tokens: List[str] = []
    for source in sources:
        for token in split_sources(source):
            if token not in tokens:
                tokens.append(token)
    return ",".join(tokens)


def most_common_value(values: Iterable[Any]) -> Tuple[Any, int]:
    """Return the most frequent non-empty value and its count.

    Ties go to the value that reached the top count first."""
    counts: Dict[Any, int] = {}
    best: Any = None
    best_count = 0
    for value in values:
        if is_empty(value):
            continue
        counts[value] = counts.get(value, 0) + 1
        if counts[value] > best_count:
            best, best_count = value, counts[value]
    return best, best_count


def agreed_facilities(records: Iterable[Record]) -> Optional[Tuple[str, ...]]:
    counts: Dict[str, int] = {}
    for record in records:
        for facility in record.facilities or ():
            counts[facility] = counts.get(facility, 0) + 1
    agreed = tuple(f for f, count in counts.items() if count >= MIN_AGREEMENT)
    return agreed or None


class DataFusionEngine:
    """Deduplicates records from several strategies into canonical entities.

    Records are validated and cleaned by the validator registered for their
    kind, grouped by that validator's dedup key and merged pairwise in
    encounter order. Invalid records are dropped, never raised.

    With ``cross_validate=True`` gym groups of two or more records go
    through cross_validate() instead, so details several sources agree on
    win over the first one seen."""

    def __init__(
        self, validators: Optional[Sequence[RecordValidator]] = None, cross_validate: bool = False
    ) -> None:
        self._validators: Tuple[RecordValidator, ...] = tuple(
            validators if validators is not None else (GymRecordValidator(), EquipmentRecordValidator())
        )
        self._cross_validate = cross_validate
        self.last_dropped = 0

    def _validator_for(self, record: Any) -> Optional[RecordValidator]:
        for validator in self._validators:
            if validator.accepts(record):
                return validator
        return None

    def merge_records(self, records: Iterable[AnyRecord]) -> List[AnyRecord]:
        groups: Dict[Tuple[int, str], List[AnyRecord]] = {}
        dropped = 0
        total = 0
        for record in records:
            total += 1
            validator = self._validator_for(record)
            if validator is None or not validator.validate(record):
                dropped += 1
                logger.debug("dropping invalid record: %r", record)
                continue
            cleaned = validator.clean(record)
            key = (self._validators.index(validator), validator.dedup_key(cleaned))
            groups.setdefault(key, []).append(cleaned)

        merged: List[AnyRecord] = []
        for (index, _), group in groups.items():
            validator = self._validators[index]
            if self._cross_validate and len(group) > 1 and isinstance(validator, GymRecordValidator):
                merged.append(self._vote(group, validator))
            else:
                merged.append(self._merge_group(group, validator))

        self.last_dropped = dropped
        logger.info(
            "merged %d records into %d (dropped %d invalid)", total, len(merged), dropped
        )
        return merged

    def _merge_group(self, group: Sequence[AnyRecord], validator: RecordValidator) -> AnyRecord:
        result = group[0]
        for record in group[1:]:
            result = self.merge_pair(result, record, validator)
        return result

    @staticmethod
    def merge_pair(existing: AnyRecord, incoming: AnyRecord, validator: RecordValidator) -> AnyRecord:
        """Merge two records sharing a dedup key; ``existing`` came first."""
        changes: Dict[str, Any] = {}

        # Ties keep the earlier record.
        identity_source = incoming if incoming.confidence > existing.confidence else existing
        for name in validator.identity_fields:
            changes[name] = getattr(identity_source, name)

        for name in validator.detail_fields:
            current = getattr(existing, name)
            if is_empty(current):
                changes[name] = getattr(incoming, name)

        for name in validator.summed_fields:
            changes[name] = (getattr(existing, name) or 0) + (getattr(incoming, name) or 0)

        extra = dict(incoming.extra)
        extra.update(existing.extra)
        changes["extra"] = extra
        changes["confidence"] = max(existing.confidence, incoming.confidence)
        changes["source"] = merge_sources(existing.source, incoming.source)
        return replace(existing, **changes)

    def cross_validate(self, records: Iterable[AnyRecord]) -> Optional[Record]:
        """Fuse gym records for one place, trusting values several sources agree on.

        The records are merged pairwise first. ``phone``, the opening hours
        and ``price`` then take the most common value when at least
        MIN_AGREEMENT records report it, and ``facilities`` keeps only the
        entries that many records name. Each agreement raises the
        confidence, capped at CROSS_VALIDATED_CONFIDENCE_CAP. Returns None
        when no valid gym record is left."""
        validator = next((v for v in self._validators if isinstance(v, GymRecordValidator)), None)
        if validator is None:
            validator = GymRecordValidator()
        group = [validator.clean(r) for r in records if validator.validate(r)]
        if not group:
            return None
        return self._vote(group, validator)

    def _vote(self, group: Sequence[Record], validator: RecordValidator) -> Record:
        merged = self._merge_group(group, validator)
        changes: Dict[str, Any] = {}
        score = 0.0

        for name in VOTED_FIELDS:
            value, count = most_common_value([getattr(r, name) for r in group])
            if count >= MIN_AGREEMENT:
                changes[name] = value
                score += AGREEMENT_SCORES.get(name, 0.0)

        facilities = agreed_facilities(group)
        if facilities:
            changes["facilities"] = facilities
            score += AGREEMENT_SCORES["facilities"]

        boosted = min(CROSS_VALIDATED_CONFIDENCE_CAP, merged.confidence + score)
        changes["confidence"] = max(merged.confidence, boosted)
        logger.debug(
            "cross-validated %s over %d records: %s (score %.2f)",
            merged.name,
            len(group),
            ", ".join(sorted(changes)),
            score,
        )
        return replace(merged, **changes)

    def compute_quality_score(self, record: AnyRecord) -> float:
        validator = self._validator_for(record)
        if validator is None:
            return 0.0
        mandatory, optional, optional_total = validator.quality_fields(record)
        score = 0.3 * (mandatory / 3) + 0.7 * (optional / optional_total)
        return min(1.0, max(0.0, score))

    def quality_bucket(self, record: AnyRecord) -> str:
        score = self.compute_quality_score(record)
        if score >= HIGH_QUALITY:
            return "high"
        if score >= MEDIUM_QUALITY:
            return "medium"
        return "low"

    def classify_by_quality(self, records: Iterable[AnyRecord]) -> Dict[str, List[AnyRecord]]:
        buckets: Dict[str, List[AnyRecord]] = {"high": [], "medium": [], "low": []}
        for record in records:
            buckets[self.quality_bucket(record)].append(record)
        return buckets

    def source_statistics(self, records: Iterable[AnyRecord]) -> Dict[str, Dict[str, Any]]:
        """Count, average confidence and quality distribution per source string."""
        totals: Dict[str, Dict[str, Any]] = {}
        for record in records:
            entry = totals.setdefault(
                record.source,
                {"count": 0, "total_confidence": 0.0, "high": 0, "medium": 0, "low": 0},
            )
            entry["count"] += 1
            entry["total_confidence"] += record.confidence
            entry[self.quality_bucket(record)] += 1

        return {
            source: {
                "count": entry["count"],
                "average_confidence": entry["total_confidence"] / entry["count"],
                "quality_distribution": {
                    "high": entry["high"],
                    "medium": entry["medium"],
                    "low": entry["low"],
                },
            }
            for source, entry in totals.items()
        }
