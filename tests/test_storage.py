"""Tests for the JsonlStorage class."""

import json
import os
import tempfile
import unittest

from crawlfusion.models import EquipmentRecord, Record
from crawlfusion.storage import JsonlStorage


class TestJsonlStorage(unittest.TestCase):
    """Verify records are written as JSON Lines."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmpdir.name, "records.jsonl")

    def tearDown(self):
        self.tmpdir.cleanup()

    def _read(self):
        with open(self.path, "r", encoding="utf-8") as f:
            return [json.loads(line) for line in f]

    def test_writes_one_line_per_record(self):
        """Each record becomes one JSON object with its kind."""
        storage = JsonlStorage(self.path)
        storage.write(Record(name="강남 헬스", address="서울", source="s1,s2", confidence=0.9, facilities=("pool",)))
        storage.write(EquipmentRecord(name="Bench", category="weights", source="s1", confidence=0.5))
        storage.close()

        lines = self._read()
        self.assertEqual(len(lines), 2)
        self.assertEqual(lines[0]["name"], "강남 헬스")
        self.assertEqual(lines[0]["kind"], "gym")
        self.assertEqual(lines[0]["facilities"], ["pool"])
        self.assertEqual(lines[1]["kind"], "equipment")
        self.assertIn("written_at", lines[1])
        self.assertEqual(storage.written, 2)

    def test_overwrites_unless_appending(self):
        """A new storage truncates the file unless append is set."""
        record = Record(name="A", address="B", source="s", confidence=0.5)
        with JsonlStorage(self.path) as storage:
            storage.write(record)
        with JsonlStorage(self.path) as storage:
            storage.write(record)
        self.assertEqual(len(self._read()), 1)
        with JsonlStorage(self.path, append=True) as storage:
            storage.write(record)
        self.assertEqual(len(self._read()), 2)


if __name__ == "__main__":
    unittest.main()
