"""Tests for the JsonApiStrategy adapter."""

import unittest

from crawlfusion.adapters import JsonApiStrategy, lookup_path, render_template
from crawlfusion.errors import BlockedError, StrategyExecutionError
from crawlfusion.models import EquipmentRecord, Query, Record


class FakeResponse:
    def __init__(self, status_code=200, payload=None, invalid=False):
        self.status_code = status_code
        self._payload = payload
        self._invalid = invalid

    def json(self):
        if self._invalid:
            raise ValueError("Expecting value")
        return self._payload


class FakeSession:
    """Stands in for curl_cffi's AsyncSession and records each request."""

    def __init__(self, response):
        self.response = response
        self.requests = []

    async def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        return self.response


class TestHelpers(unittest.TestCase):
    """Verify template rendering and path lookup."""

    def test_render_template(self):
        """Placeholders are replaced in nested structures."""
        query = Query("Iron Gym", "Seoul")
        rendered = render_template({"q": "{name} {address}", "n": [1, "{name}"]}, query)
        self.assertEqual(rendered, {"q": "Iron Gym Seoul", "n": [1, "Iron Gym"]})

    def test_lookup_path(self):
        """Dotted paths walk mappings and list indexes."""
        payload = {"data": {"items": [{"name": "A"}, {"name": "B"}]}}
        self.assertEqual(lookup_path(payload, "data.items.1.name"), "B")
        self.assertIsNone(lookup_path(payload, "data.missing.name"))
        self.assertIsNone(lookup_path(payload, "data.items.5"))


class TestJsonApiStrategy(unittest.IsolatedAsyncioTestCase):
    """Verify request building and record mapping."""

    async def test_maps_first_item(self):
        """The first item under items_key is mapped into a Record."""
        payload = {
            "results": [
                {"title": "Iron Gym", "addr": "Seoul Gangnam", "tel": "02-111", "geo": {"lat": 37.5, "lng": 127.0}},
                {"title": "Other"},
            ]
        }
        session = FakeSession(FakeResponse(200, payload))
        strategy = JsonApiStrategy(
            "places",
            1,
            url="https://api.example.com/search",
            params={"query": "{name} {address}", "size": 1},
            items_key="results",
            field_map={"name": "title", "address": "addr", "phone": "tel", "latitude": "geo.lat", "longitude": "geo.lng"},
            confidence=0.7,
            session=session,
        )

        record = await strategy.execute(Query("iron gym", "Seoul"))

        self.assertIsInstance(record, Record)
        self.assertEqual(record.name, "Iron Gym")
        self.assertEqual(record.phone, "02-111")
        self.assertEqual((record.latitude, record.longitude), (37.5, 127.0))
        self.assertEqual(record.source, "places")
        self.assertEqual(record.confidence, 0.7)
        method, url, kwargs = session.requests[0]
        self.assertEqual(method, "GET")
        self.assertEqual(url, "https://api.example.com/search")
        self.assertEqual(kwargs["params"], {"query": "iron gym Seoul", "size": 1})
        self.assertNotIn("impersonate", kwargs)

    async def test_missing_fields_fall_back_to_query(self):
        """Name and address default to the query values."""
        session = FakeSession(FakeResponse(200, {"phone": "1"}))
        strategy = JsonApiStrategy("api", 1, url="https://x", session=session)
        record = await strategy.execute(Query("Gym", "Busan"))
        self.assertEqual((record.name, record.address, record.phone), ("Gym", "Busan", "1"))

    async def test_empty_items_return_none(self):
        """An empty result list means nothing was found."""
        session = FakeSession(FakeResponse(200, {"results": []}))
        strategy = JsonApiStrategy("api", 1, url="https://x", items_key="results", session=session)
        self.assertIsNone(await strategy.execute(Query("Gym")))

    async def test_post_with_json_body(self):
        """A JSON body is rendered and sent with impersonation when set."""
        session = FakeSession(FakeResponse(200, {"name": "Gym"}))
        strategy = JsonApiStrategy(
            "api", 1, url="https://x", method="post", json_body={"keyword": "{name}"},
            impersonate="chrome120", session=session,
        )
        await strategy.execute(Query("Gym"))
        method, _, kwargs = session.requests[0]
        self.assertEqual(method, "POST")
        self.assertEqual(kwargs["json"], {"keyword": "Gym"})
        self.assertEqual(kwargs["impersonate"], "chrome120")

    async def test_equipment_records(self):
        """record_kind=equipment maps into an EquipmentRecord."""
        payload = {"name": "Bench", "type": "weights", "gym": "g1", "count": 3}
        session = FakeSession(FakeResponse(200, payload))
        strategy = JsonApiStrategy(
            "eq", 1, url="https://x", record_kind="equipment",
            field_map={"category": "type", "gym_id": "gym", "quantity": "count"}, session=session,
        )
        record = await strategy.execute(Query("Bench"))
        self.assertIsInstance(record, EquipmentRecord)
        self.assertEqual((record.category, record.gym_id, record.quantity), ("weights", "g1", 3))

    async def test_forbidden_raises_blocked(self):
        """A 403 response raises BlockedError."""
        strategy = JsonApiStrategy("api", 1, url="https://x", session=FakeSession(FakeResponse(403)))
        with self.assertRaises(BlockedError):
            await strategy.execute(Query("Gym"))
        self.assertFalse(strategy.is_available())

    async def test_invalid_json_raises(self):
        """An unparseable body raises StrategyExecutionError."""
        strategy = JsonApiStrategy("api", 1, url="https://x", session=FakeSession(FakeResponse(200, invalid=True)))
        with self.assertRaises(StrategyExecutionError) as ctx:
            await strategy.execute(Query("Gym"))
        self.assertIn("invalid_json", str(ctx.exception))

    def test_unknown_record_kind(self):
        """Only gym and equipment records are supported."""
        with self.assertRaises(ValueError):
            JsonApiStrategy("api", 1, url="https://x", record_kind="car")


if __name__ == "__main__":
    unittest.main()
