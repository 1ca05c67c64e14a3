"""
Tests for catalog/store.py: JSON persistence of catalog rows.
"""

import json
import sys
import tempfile
import unittest
from pathlib import Path

# Ensure project root is on the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from catalog.categories import BlockingCategory
from catalog.defaults import build_default_entries
from catalog.matcher import PatternMatcher
from catalog.patterns import PatternEntry, PatternSource, hash_identifier
from catalog.store import CatalogStore


class TestCatalogStore(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "catalog.json"

    def tearDown(self):
        self._tmp.cleanup()

    def test_missing_file_seeds_defaults(self):
        store = CatalogStore(self.path)
        entries = store.load()
        self.assertEqual(len(entries), len(build_default_entries()))
        self.assertTrue(any(e.is_regex for e in entries))

    def test_corrupt_file_falls_back_to_defaults(self):
        self.path.write_text("{not json")
        entries = CatalogStore(self.path).load()
        self.assertEqual(len(entries), len(build_default_entries()))

    def test_unreadable_rows_skipped(self):
        self.path.write_text(json.dumps({"entries": [
            {"id": 1, "pattern": "ok.example", "category": "GAMBLING"},
            {"id": 2, "pattern": "bad.example", "category": "NOT_A_CATEGORY"},
            {"id": 3, "category": "GAMBLING"},
        ]}))
        entries = CatalogStore(self.path).load()
        self.assertEqual([e.id for e in entries], [1])

    def test_save_and_reload_round_trip(self):
        store = CatalogStore(self.path)
        store.add_custom_site("https://www.Casino.example/x", BlockingCategory.GAMBLING)

        reloaded = CatalogStore(self.path)
        entry = next(e for e in reloaded.entries() if e.pattern == "casino.example")
        self.assertEqual(entry.domain_hash, hash_identifier("casino.example"))
        self.assertEqual(entry.source, PatternSource.USER_ADDED)
        self.assertTrue(entry.is_custom)
        self.assertTrue(entry.added_by_user)
        self.assertEqual(entry.confidence, 1.0)

    def test_add_existing_site_reactivates(self):
        store = CatalogStore(self.path)
        first = store.add_custom_site("casino.example", BlockingCategory.GAMBLING)
        store.remove_site("casino.example")
        second = store.add_custom_site("casino.example", BlockingCategory.EXPLICIT_CONTENT)
        self.assertEqual(first.id, second.id)
        self.assertTrue(second.is_active)
        self.assertEqual(second.category, BlockingCategory.EXPLICIT_CONTENT)

    def test_add_empty_site(self):
        self.assertIsNone(CatalogStore(self.path).add_custom_site("   ", BlockingCategory.GAMBLING))

    def test_soft_delete(self):
        store = CatalogStore(self.path)
        store.add_custom_site("luckyspin.example", BlockingCategory.GAMBLING)
        self.assertTrue(store.remove_site("luckyspin.example"))
        self.assertFalse(store.remove_site("luckyspin.example"))

        entry = next(e for e in store.entries() if e.pattern == "luckyspin.example")
        self.assertFalse(entry.is_active)
        self.assertNotIn(entry, store.active_entries())
        self.assertIsNone(PatternMatcher(store.active_entries()).match("luckyspin.example"))

        self.assertTrue(store.reactivate_site("luckyspin.example"))
        self.assertIsNotNone(PatternMatcher(store.active_entries()).match("luckyspin.example"))

    def test_store_edits_not_visible_until_reload(self):
        store = CatalogStore(self.path)
        entry = store.add_custom_site("luckyspin.example", BlockingCategory.GAMBLING)
        matcher = PatternMatcher(store.active_entries())
        snapshot = matcher.catalog

        store.add_custom_site("luckyspin.example", BlockingCategory.EXPLICIT_CONTENT)
        store.apply_hit_counts({entry.id: 7})
        self.assertEqual(matcher.match("luckyspin.example").category, BlockingCategory.GAMBLING)

        store.remove_site("luckyspin.example")
        self.assertIsNotNone(matcher.match("luckyspin.example"))
        self.assertIs(matcher.catalog, snapshot)

        matcher.reload(store.active_entries())
        self.assertIsNone(matcher.match("luckyspin.example"))

    def test_apply_hit_counts(self):
        store = CatalogStore(self.path)
        entry = store.add_custom_site("casino.example", BlockingCategory.GAMBLING)
        self.assertTrue(store.apply_hit_counts({entry.id: 3, 9999: 1}))
        store.apply_hit_counts({entry.id: 2})

        reloaded = CatalogStore(self.path)
        self.assertEqual(reloaded.get_entry(entry.id).block_count, 5)

    def test_import_replaces_literal_by_hash(self):
        store = CatalogStore(self.path)
        original = store.add_custom_site("casino.example", BlockingCategory.GAMBLING)
        store.apply_hit_counts({original.id: 4})

        imported = store.import_entries([
            {"pattern": "casino.example", "category": "ExplicitContent", "confidence": 0.7, "source": "community"},
            {"pattern": "slots", "is_regex": True, "category": "gambling", "confidence": 0.6},
            {"pattern": "", "category": "GAMBLING"},
        ])
        self.assertEqual(imported, 2)

        entry = store.get_entry(original.id)
        self.assertEqual(entry.category, BlockingCategory.EXPLICIT_CONTENT)
        self.assertEqual(entry.source, PatternSource.COMMUNITY)
        self.assertEqual(entry.block_count, 4)

    def test_queries(self):
        store = CatalogStore(self.path)
        store.add_custom_site("casino.example", BlockingCategory.GAMBLING)
        store.add_custom_site("dating.example", BlockingCategory.DATING_SITES)

        user_sites = {e.pattern for e in store.get_user_added_sites()}
        self.assertEqual(user_sites, {"casino.example", "dating.example"})

        results = store.search("casino")
        self.assertEqual(results[0].pattern, "casino.example")

        counts = store.category_counts()
        self.assertGreaterEqual(counts[BlockingCategory.DATING_SITES], 1)


class TestPatternEntry(unittest.TestCase):

    def test_confidence_clamped(self):
        entry = PatternEntry(id=1, pattern="a.example", category=BlockingCategory.GAMBLING, confidence=1.7)
        self.assertEqual(entry.confidence, 1.0)

    def test_literal_lowercased(self):
        entry = PatternEntry(id=1, pattern=" A.Example ", category=BlockingCategory.GAMBLING)
        self.assertEqual(entry.pattern, "a.example")
        self.assertEqual(entry.domain_hash, hash_identifier("a.example"))

    def test_category_names(self):
        self.assertEqual(BlockingCategory.from_name("ExplicitContent"), BlockingCategory.EXPLICIT_CONTENT)
        self.assertEqual(BlockingCategory.from_name("dating_sites"), BlockingCategory.DATING_SITES)
        self.assertIsNone(BlockingCategory.from_name("nope"))

    def test_from_dict_rejects_unknown_category(self):
        with self.assertRaises(ValueError):
            PatternEntry.from_dict({"id": 1, "pattern": "a.example", "category": "weird"})


if __name__ == "__main__":
    unittest.main()
