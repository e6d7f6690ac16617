from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any, Optional, Tuple

from .models import EquipmentRecord, Record, is_empty, normalize_key_part


def split_sources(source: Any) -> Tuple[str, ...]:
    """Split a comma-joined source string into unique, stripped tokens."""
    if not isinstance(source, str):
        return ()
    tokens = []
    for part in source.split(","):
        token = part.strip()
        if token and token not in tokens:
            tokens.append(token)
    return tuple(tokens)


def is_well_formed_source(source: Any) -> bool:
    if not isinstance(source, str) or not source.strip():
        return False
    return all(part.strip() for part in source.split(","))


def is_valid_confidence(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not math.isnan(value) and 0 <= value <= 1


def clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = " ".join(str(value).split())
    return text or None


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def clamp_float(value: Any, low: float, high: float) -> Optional[float]:
    number = _to_float(value)
    if number is None:
        return None
    return min(high, max(low, number))


def clamp_count(value: Any) -> Optional[int]:
    number = _to_float(value)
    if number is None:
        return None
    return max(0, int(number))


def clean_facilities(value: Any) -> Optional[Tuple[str, ...]]:
    if value is None:
        return None
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple, set, frozenset)):
        items = list(value)
    else:
        items = [value]
    cleaned = []
    for item in items:
        text = clean_text(item)
        if text and text not in cleaned:
            cleaned.append(text)
    return tuple(cleaned) or None


class RecordValidator(ABC):
    """Per-kind validation, cleaning and merge layout used by the fusion engine.

    ``identity_fields`` are taken from the most confident contributor,
    ``detail_fields`` from the first contributor that has them and
    ``summed_fields`` are added together."""

    record_type: type = object
    identity_fields: Tuple[str, ...] = ()
    detail_fields: Tuple[str, ...] = ()
    summed_fields: Tuple[str, ...] = ()

    def accepts(self, record: Any) -> bool:
        return isinstance(record, self.record_type)

    @abstractmethod
    def validate(self, record: Any) -> bool:
        ...

    @abstractmethod
    def clean(self, record: Any) -> Any:
        ...

    @abstractmethod
    def dedup_key(self, record: Any) -> str:
        ...

    @abstractmethod
    def quality_fields(self, record: Any) -> Tuple[int, int, int]:
        """Return (mandatory present, optional present, optional total)."""


class GymRecordValidator(RecordValidator):
    record_type = Record
    identity_fields = ("name", "address")
    detail_fields = (
        "phone",
        "latitude",
        "longitude",
        "open_hour",
        "close_hour",
        "price",
        "rating",
        "review_count",
        "facilities",
    )

    def validate(self, record: Any) -> bool:
        if not isinstance(record, Record):
            return False
        if not isinstance(record.name, str) or not record.name.strip():
            return False
        if not isinstance(record.address, str) or not record.address.strip():
            return False
        return is_well_formed_source(record.source) and is_valid_confidence(record.confidence)

    def clean(self, record: Record) -> Record:
        return replace(
            record,
            name=clean_text(record.name) or "",
            address=clean_text(record.address) or "",
            source=",".join(split_sources(record.source)),
            confidence=float(record.confidence),
            phone=clean_text(record.phone),
            latitude=clamp_float(record.latitude, -90.0, 90.0),
            longitude=clamp_float(record.longitude, -180.0, 180.0),
            open_hour=clean_text(record.open_hour),
            close_hour=clean_text(record.close_hour),
            price=clean_text(record.price),
            rating=clamp_float(record.rating, 0.0, 5.0),
            review_count=clamp_count(record.review_count),
            facilities=clean_facilities(record.facilities),
            extra=dict(record.extra or {}),
        )

    def dedup_key(self, record: Record) -> str:
        return f"{normalize_key_part(record.name)}-{normalize_key_part(record.address)}"

    def quality_fields(self, record: Record) -> Tuple[int, int, int]:
        mandatory = sum(1 for value in (record.name, record.address, record.source) if not is_empty(value))
        optional = sum(
            1
            for present in (
                not is_empty(record.phone),
                record.latitude is not None and record.longitude is not None,
                not is_empty(record.open_hour) or not is_empty(record.close_hour),
                not is_empty(record.price),
                record.rating is not None,
                not is_empty(record.facilities),
                record.review_count is not None,
            )
            if present
        )
        return mandatory, optional, 7


class EquipmentRecordValidator(RecordValidator):
    record_type = EquipmentRecord
    identity_fields = ("name", "category")
    detail_fields = ("gym_id",)
    summed_fields = ("quantity",)

    def validate(self, record: Any) -> bool:
        if not isinstance(record, EquipmentRecord):
            return False
        if not isinstance(record.name, str) or not record.name.strip():
            return False
        if not isinstance(record.category, str) or not record.category.strip():
            return False
        return is_well_formed_source(record.source) and is_valid_confidence(record.confidence)

    def clean(self, record: EquipmentRecord) -> EquipmentRecord:
        return replace(
            record,
            name=clean_text(record.name) or "",
            category=clean_text(record.category) or "",
            source=",".join(split_sources(record.source)),
            confidence=float(record.confidence),
            gym_id=clean_text(record.gym_id),
            quantity=clamp_count(record.quantity) or 0,
            extra=dict(record.extra or {}),
        )

    def dedup_key(self, record: EquipmentRecord) -> str:
        owner = normalize_key_part(record.gym_id) or "unknown"
        return f"{owner}-{normalize_key_part(record.category)}-{normalize_key_part(record.name)}"

    def quality_fields(self, record: EquipmentRecord) -> Tuple[int, int, int]:
        mandatory = sum(1 for value in (record.name, record.category, record.source) if not is_empty(value))
        optional = int(not is_empty(record.gym_id)) + int(record.quantity > 0)
        return mandatory, optional, 2
