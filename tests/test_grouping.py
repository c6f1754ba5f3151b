"""
Tests for deterministic record grouping.
"""

from recall.identity.grouping import GroupType, group_records
from recall.identity.types import PersonCategory, Record, StoreSnapshot


# ==================== Grouping Tests ====================

class TestGroupRecords:
    """Tests for group_records."""

    def test_company_groups_normalised(self):
        """Test company matching ignores case and spacing."""
        a = Record(name="Sam Lee", company="Acme Corp")
        b = Record(name="Dana Cruz", company="  acme corp")
        c = Record(name="Alex Kim", company="Stripe")

        groups = group_records([a, b, c])

        assert len(groups) == 1
        assert groups[0].type == GroupType.COMPANY
        assert groups[0].label == "Acme Corp"
        assert groups[0].record_ids == [a.id, b.id]
        assert groups[0].count == 2

    def test_category_groups_skip_other(self):
        """Test category groups need two members and never use OTHER."""
        records = [
            Record(name="A", category=PersonCategory.INVESTOR),
            Record(name="B", category=PersonCategory.INVESTOR),
            Record(name="C", category=PersonCategory.STUDENT),
            Record(name="D"),
            Record(name="E"),
        ]

        groups = group_records(records)

        assert [(g.type, g.label, g.count) for g in groups] == [(GroupType.CATEGORY, "Investors", 2)]

    def test_snapshot_input(self):
        """Test grouping a store snapshot, active record included."""
        active = Record(name="Tom Diaz", company="Figma")
        earlier = Record(name="Ana Ruiz", company="Figma")

        groups = group_records(StoreSnapshot(active=active, history=(earlier,)))

        assert groups[0].record_ids == [active.id, earlier.id]

    def test_nothing_to_group(self):
        """Test an empty or ungroupable set."""
        assert group_records([]) == []
        assert group_records([Record(name="Solo", company="Acme")]) == []
