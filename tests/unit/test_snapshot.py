"""
Unit tests for the snapshot model and the repair pass.

Run with: pytest tests/unit/test_snapshot.py -v
"""

import pytest

from imagecat.core.errors import MalformedSnapshot
from imagecat.core.snapshot import Snapshot, repair_items
from imagecat.crawler.slugs import Item, image_url


class TestRepairItems:
    """Test suite for repair_items()"""

    def test_keeps_valid_items_sorted(self):
        """Test valid items survive and come back sorted"""
        items, report = repair_items([
            {"name": "nginx", "url": image_url("nginx")},
            {"name": "alpine", "url": image_url("alpine")},
        ])

        assert [item.name for item in items] == ["alpine", "nginx"]
        assert report.kept == 2
        assert report.total_dropped == 0

    def test_url_is_preferred_over_name(self):
        """Test the slug is re-derived from the stored URL first"""
        items, _ = repair_items([{"name": "WRONG NAME", "url": image_url("redis")}])

        assert items == [Item.for_slug("redis")]

    def test_name_is_fallback_when_url_is_unusable(self):
        """Test a broken URL falls back to the lowercased name"""
        items, _ = repair_items([{"name": "Python", "url": "https://evil.example/x"}])

        assert items == [Item.for_slug("python")]

    def test_url_is_rederived_not_trusted(self):
        """Test stored URLs are replaced by the canonical one"""
        items, _ = repair_items([{"name": "go", "url": "http://mirror.local/directory/image/go?x=1"}])

        assert items[0].url == image_url("go")

    def test_drops_are_counted_by_reason(self):
        """Test invalid, denylisted, duplicate and junk entries are dropped and counted"""
        items, report = repair_items([
            {"name": "nginx"},
            {"name": "NGINX"},
            {"name": "latest"},
            {"name": "-bad"},
            {"url": None},
            "not-a-dict",
        ])

        assert [item.name for item in items] == ["nginx"]
        assert report.dropped["duplicate"] == 1
        assert report.dropped["denylisted"] == 1
        assert report.dropped["grammar"] == 1
        assert report.dropped["missing"] == 2
        assert report.to_dict()["dropped"] == 5

    def test_repair_is_a_fixed_point(self):
        """Test repairing twice equals repairing once"""
        dirty = [
            {"name": "b"},
            {"name": "A"},
            {"name": "libstdc++"},
            {"name": "a"},
            {"name": "tag"},
        ]

        once, _ = repair_items(dirty)
        twice, report = repair_items([item.to_dict() for item in once])

        assert once == twice
        assert report.total_dropped == 0

    def test_never_raises(self):
        """Test arbitrary junk never raises"""
        items, report = repair_items([None, 1, [], {"name": 5, "url": 7}])

        assert items == []
        assert report.total_dropped == 4


class TestSnapshotDocument:
    """Test suite for parsing persisted snapshots"""

    def test_missing_fields_are_defaulted(self):
        """Test an empty object becomes a fresh-looking snapshot"""
        snapshot, _ = Snapshot.from_document({})

        assert snapshot.items == []
        assert snapshot.cursor == 1
        assert snapshot.last_page is None
        assert snapshot.complete is False
        assert snapshot.cron_ticks == 0
        assert snapshot.last_updated > 0

    def test_ill_typed_fields_are_defaulted(self):
        """Test wrong types fall back to defaults instead of failing"""
        snapshot, _ = Snapshot.from_document({
            "items": "nope",
            "cursor": "abc",
            "lastPage": 0,
            "complete": "yes",
            "lastUpdated": None,
            "cronTicks": -4,
        })

        assert snapshot.items == []
        assert snapshot.cursor == 1
        assert snapshot.last_page is None
        assert snapshot.complete is False
        assert snapshot.cron_ticks == 0

    def test_values_survive(self):
        """Test well-formed values are kept as-is"""
        snapshot, _ = Snapshot.from_document({
            "items": [{"name": "nginx", "url": image_url("nginx")}],
            "cursor": 7,
            "lastPage": 278,
            "complete": True,
            "lastUpdated": 1700000000,
            "cronTicks": 12,
            "seen": {"ghost": True},
        })

        assert snapshot.cursor == 7
        assert snapshot.last_page == 278
        assert snapshot.complete is True
        assert snapshot.last_updated == 1700000000
        assert snapshot.cron_ticks == 12
        assert snapshot.seen == {"nginx"}

    @pytest.mark.parametrize("data", [[], "text", 3, None])
    def test_non_object_is_malformed(self, data):
        """Test a top-level value that is not an object is fatal"""
        with pytest.raises(MalformedSnapshot):
            Snapshot.from_document(data)


class TestSnapshot:
    """Test suite for Snapshot behaviour"""

    def test_add_item_is_idempotent(self):
        """Test merging by name inserts at most once"""
        snapshot = Snapshot.fresh()

        assert snapshot.add_item(Item.for_slug("nginx")) is True
        assert snapshot.add_item(Item.for_slug("nginx")) is False
        assert snapshot.total == 1

    def test_seen_is_derived(self):
        """Test the seen index is rebuilt from items"""
        snapshot = Snapshot(items=[Item.for_slug("a"), Item.for_slug("b")])

        assert snapshot.seen == {"a", "b"}

    def test_restart_keeps_items(self):
        """Test restart resets progress only"""
        snapshot = Snapshot(items=[Item.for_slug("a")], cursor=9, complete=True, last_page=8)

        snapshot.restart()

        assert snapshot.cursor == 1
        assert snapshot.complete is False
        assert snapshot.last_page == 8
        assert snapshot.total == 1

    def test_to_dict_shape(self):
        """Test the persisted representation"""
        snapshot = Snapshot(items=[Item.for_slug("nginx")], cursor=2, last_updated=5)

        assert snapshot.to_dict() == {
            "items": [{"name": "nginx", "url": image_url("nginx")}],
            "cursor": 2,
            "lastPage": None,
            "complete": False,
            "lastUpdated": 5,
            "cronTicks": 0,
        }

    def test_sort_is_case_insensitive(self):
        """Test items sort without regard to case"""
        snapshot = Snapshot(items=[Item("Zeta", "u"), Item("alpha", "u"), Item("Beta", "u")])

        snapshot.sort_items()

        assert [item.name for item in snapshot.items] == ["alpha", "Beta", "Zeta"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
