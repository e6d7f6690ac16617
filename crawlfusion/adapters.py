from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from curl_cffi.requests import AsyncSession

from .base import HttpStrategy
from .errors import StrategyExecutionError
from .models import AnyRecord, EquipmentRecord, Query, Record
from .validators import clean_facilities

GYM_FIELDS = (
    "name",
    "address",
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
EQUIPMENT_FIELDS = ("name", "category", "gym_id", "quantity")


def render_template(value: Any, query: Query) -> Any:
    """Substitute ``{name}`` and ``{address}`` in every string of a nested structure."""
    if isinstance(value, str):
        return value.replace("{name}", query.name).replace("{address}", query.address)
    if isinstance(value, Mapping):
        return {k: render_template(v, query) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [render_template(v, query) for v in value]
    return value


def lookup_path(payload: Any, path: str) -> Any:
    """Resolve a dotted path such as ``data.items`` or ``results.0.name``."""
    current = payload
    for part in path.split("."):
        if isinstance(current, Mapping):
            current = current.get(part)
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            current = current[index] if index < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


class JsonApiStrategy(HttpStrategy):
    """Generic JSON endpoint adapter.

    Sends one request per query, takes the first item found under
    ``items_key`` and maps it into a record through ``field_map``
    (record field -> dotted path in the item). Unmapped record fields are
    looked up under their own name."""

    def __init__(
        self,
        name: str,
        priority: int,
        url: str,
        method: str = "GET",
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        json_body: Optional[Mapping[str, Any]] = None,
        items_key: Optional[str] = None,
        field_map: Optional[Mapping[str, str]] = None,
        confidence: float = 0.8,
        record_kind: str = "gym",
        timeout: float = 20.0,
        impersonate: Optional[str] = None,
        block_cooldown_secs: float = 60.0,
        session: Any = None,
    ) -> None:
        super().__init__(name, priority, block_cooldown_secs=block_cooldown_secs)
        if record_kind not in ("gym", "equipment"):
            raise ValueError(f"Unknown record_kind: {record_kind}")
        self._url = url
        self._method = method.upper()
        self._params = dict(params or {})
        self._headers = dict(headers or {})
        self._json_body = json_body
        self._items_key = items_key
        self._field_map = dict(field_map or {})
        self._confidence = confidence
        self._record_kind = record_kind
        self._timeout = timeout
        self._impersonate = impersonate
        self._session = session

    async def fetch(self, query: Query) -> Any:
        if self._session is not None:
            return await self._request(self._session, query)
        async with AsyncSession() as session:
            return await self._request(session, query)

    async def _request(self, session: Any, query: Query) -> Any:
        kwargs: Dict[str, Any] = {
            "params": render_template(self._params, query) or None,
            "headers": self._headers or None,
            "timeout": self._timeout,
        }
        if self._json_body is not None:
            kwargs["json"] = render_template(self._json_body, query)
        if self._impersonate:
            kwargs["impersonate"] = self._impersonate
        return await session.request(self._method, self._url, **kwargs)

    def parse(self, response: Any, query: Query) -> Optional[AnyRecord]:
        try:
            payload = response.json()
        except Exception as exc:  # noqa: BLE001
            raise StrategyExecutionError(self.name, f"invalid_json: {exc}") from exc

        item = lookup_path(payload, self._items_key) if self._items_key else payload
        if isinstance(item, list):
            item = item[0] if item else None
        if not isinstance(item, Mapping):
            return None
        return self.build_record(item, query)

    def _field(self, item: Mapping[str, Any], field_name: str) -> Any:
        return lookup_path(item, self._field_map.get(field_name, field_name))

    def build_record(self, item: Mapping[str, Any], query: Query) -> AnyRecord:
        if self._record_kind == "equipment":
            values = {f: self._field(item, f) for f in EQUIPMENT_FIELDS}
            quantity = values["quantity"]
            return EquipmentRecord(
                name=values["name"] or query.name,
                category=values["category"] or "",
                source=self.name,
                confidence=self._confidence,
                gym_id=values["gym_id"],
                quantity=1 if quantity is None else quantity,
            )

        values = {f: self._field(item, f) for f in GYM_FIELDS}
        return Record(
            name=values["name"] or query.name,
            address=values["address"] or query.address,
            source=self.name,
            confidence=self._confidence,
            phone=values["phone"],
            latitude=values["latitude"],
            longitude=values["longitude"],
            open_hour=values["open_hour"],
            close_hour=values["close_hour"],
            price=values["price"],
            rating=values["rating"],
            review_count=values["review_count"],
            facilities=clean_facilities(values["facilities"]),
        )
