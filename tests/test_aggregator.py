"""
Tests for the Candidate Aggregator.

Tests cover:
- Record creation and field fill rules
- Name refinement
- Person switches, re-engagement and release
- Operator self-name filtering
- Fuzzy action item deduplication
"""

from recall.core.config import AggregatorConfig
from recall.identity.aggregator import (
    AggregatorState,
    CandidateAggregator,
    Transition,
    append_action_items,
)
from recall.identity.store import RecordStore
from recall.identity.text import build_contact_url
from recall.identity.types import ActionItem, Candidate, PersonCategory


def make_aggregator(self_names=None, session_id="s1"):
    store = RecordStore()
    config = AggregatorConfig(self_names=self_names or [])
    return store, CandidateAggregator(store, config, session_id=session_id)


# ==================== Creation Tests ====================

class TestCreation:
    """Tests for the NO_ACTIVE state."""

    def test_named_candidate_creates_record(self):
        """Test CREATE from a named candidate."""
        store, aggregator = make_aggregator()

        result = aggregator.ingest(Candidate(name="Elena", company="Figma"))
        active = store.get_active()

        assert result.transition == Transition.CREATE
        assert result.state == AggregatorState.HAS_ACTIVE
        assert active.id == result.record_id
        assert active.session_id == "s1"
        assert active.category == PersonCategory.OTHER
        assert active.contact_url == build_contact_url("Elena", "Figma")

    def test_unnamed_candidate_is_ignored(self):
        """Test that no record is created without a name."""
        store, aggregator = make_aggregator()

        result = aggregator.ingest(Candidate(company="Figma", summary="Design tools"))

        assert result.transition == Transition.IGNORE
        assert aggregator.state == AggregatorState.NO_ACTIVE
        assert len(store) == 0


# ==================== Update Tests ====================

class TestUpdates:
    """Tests for folding candidates into the active record."""

    def test_name_refinement(self):
        """Test a first name refined into the full name it prefixes."""
        store, aggregator = make_aggregator()
        aggregator.ingest(Candidate(name="Elena"))

        result = aggregator.ingest(Candidate(name="Elena Vasquez", company="Figma"))
        active = store.get_active()

        assert result.transition == Transition.UPDATE
        assert active.name == "Elena Vasquez"
        assert active.company == "Figma"
        assert len(store) == 1

    def test_unrelated_name_does_not_overwrite(self):
        """Test that a non-refining name leaves the existing one."""
        store, aggregator = make_aggregator()
        aggregator.ingest(Candidate(name="Elena Vasquez"))

        aggregator.ingest(Candidate(name="Marcus"))

        assert store.get_active().name == "Elena Vasquez"

    def test_company_and_role_fill_only_when_empty(self):
        """Test fill-empty semantics."""
        store, aggregator = make_aggregator()
        aggregator.ingest(Candidate(name="Priya", company="Apple"))

        aggregator.ingest(Candidate(company="Google", role="Engineer"))
        active = store.get_active()

        assert active.company == "Apple"
        assert active.role == "Engineer"

    def test_category_only_replaces_other(self):
        """Test category fill rule."""
        store, aggregator = make_aggregator()
        aggregator.ingest(Candidate(name="Sam"))

        aggregator.ingest(Candidate(category=PersonCategory.FOUNDER))
        aggregator.ingest(Candidate(category=PersonCategory.INVESTOR))

        assert store.get_active().category == PersonCategory.FOUNDER

    def test_summary_is_replaced(self):
        """Test the latest summary wins."""
        store, aggregator = make_aggregator()
        aggregator.ingest(Candidate(name="Sam", summary="Runs a bakery"))

        aggregator.ingest(Candidate(summary="Runs a bakery and a food truck"))

        assert store.get_active().summary == "Runs a bakery and a food truck"

    def test_empty_candidate_is_ignored(self):
        """Test IGNORE while a record is active."""
        store, aggregator = make_aggregator()
        aggregator.ingest(Candidate(name="Sam"))

        result = aggregator.ingest(Candidate())

        assert result.transition == Transition.IGNORE
        assert result.record_id == store.get_active().id

    def test_same_name_new_person_is_update(self):
        """Test re-announcing the active person."""
        store, aggregator = make_aggregator()
        aggregator.ingest(Candidate(name="Elena"))

        result = aggregator.ingest(Candidate(name="elena", is_new_person=True, role="Designer"))

        assert result.transition == Transition.UPDATE
        assert store.get_active().role == "Designer"
        assert len(store) == 1

    def test_shorter_name_new_person_is_update(self):
        """Test a new-person candidate carrying the first name of the active record."""
        store, aggregator = make_aggregator()
        aggregator.ingest(Candidate(name="Elena Vasquez"))

        result = aggregator.ingest(Candidate(name="Elena", is_new_person=True, company="Figma"))
        active = store.get_active()

        assert result.transition == Transition.UPDATE
        assert active.name == "Elena Vasquez"
        assert active.company == "Figma"
        assert len(store) == 1


# ==================== Switch Tests ====================

class TestSwitches:
    """Tests for person switches."""

    def test_switch_moves_active_to_history(self):
        """Test SWITCH on a new named person."""
        store, aggregator = make_aggregator()
        first = aggregator.ingest(Candidate(name="Elena Vasquez"))

        result = aggregator.ingest(Candidate(name="Marcus Lee", is_new_person=True))
        snapshot = store.snapshot()

        assert result.transition == Transition.SWITCH
        assert result.released_id == first.record_id
        assert snapshot.active.name == "Marcus Lee"
        assert snapshot.history[0].id == first.record_id

    def test_new_person_flag_required_for_switch(self):
        """Test that a different name alone does not switch."""
        store, aggregator = make_aggregator()
        aggregator.ingest(Candidate(name="Elena Vasquez"))

        result = aggregator.ingest(Candidate(name="Marcus Lee"))

        assert result.transition == Transition.UPDATE
        assert len(store) == 1

    def test_unnamed_new_person_releases(self):
        """Test RELEASE when a new person has no name yet."""
        store, aggregator = make_aggregator()
        first = aggregator.ingest(Candidate(name="Elena"))

        result = aggregator.ingest(Candidate(is_new_person=True, company="Stripe"))

        assert result.transition == Transition.RELEASE
        assert result.released_id == first.record_id
        assert aggregator.state == AggregatorState.NO_ACTIVE
        assert store.snapshot().history[0].company is None

    def test_reengage_same_session_record(self):
        """Test returning to a person met earlier in the same session."""
        store, aggregator = make_aggregator()
        elena = aggregator.ingest(Candidate(name="Elena Vasquez"))
        marcus = aggregator.ingest(Candidate(name="Marcus Lee", is_new_person=True))

        result = aggregator.ingest(Candidate(name="Elena Vasquez", is_new_person=True, role="Designer"))
        snapshot = store.snapshot()

        assert result.transition == Transition.REENGAGE
        assert snapshot.active.id == elena.record_id
        assert snapshot.active.role == "Designer"
        assert [r.id for r in snapshot.history] == [marcus.record_id]
        assert len(store) == 2

    def test_no_reengage_across_sessions(self):
        """Test that history from another session creates a new record."""
        store, aggregator = make_aggregator(session_id="s2")
        old = aggregator.ingest(Candidate(name="Elena Vasquez"))
        store.update(old.record_id, lambda r: _with_session(r, "s1"))
        aggregator.ingest(Candidate(name="Marcus Lee", is_new_person=True))

        result = aggregator.ingest(Candidate(name="Elena Vasquez", is_new_person=True))

        assert result.transition == Transition.SWITCH
        assert result.record_id != old.record_id

    def test_tombstoned_active_is_never_reused(self):
        """Test that a retired id does not come back through the aggregator."""
        store, aggregator = make_aggregator()
        first = aggregator.ingest(Candidate(name="Elena"))
        store.tombstone(first.record_id, reason="test")

        result = aggregator.ingest(Candidate(name="Elena"))

        assert result.transition == Transition.CREATE
        assert result.record_id != first.record_id
        assert store.get(first.record_id) is None


def _with_session(record, session_id):
    record.session_id = session_id
    return record


# ==================== Self Filter Tests ====================

class TestSelfFilter:
    """Tests for operator name filtering."""

    def test_operator_name_creates_nothing(self):
        """Test that the operator never gets a record."""
        store, aggregator = make_aggregator(self_names=["Navi Rao"])

        result = aggregator.ingest(Candidate(name="Navi", company="Recall"))

        assert result.transition == Transition.IGNORE
        assert len(store) == 0

    def test_operator_details_dropped_from_update(self):
        """Test that operator company and role do not leak into the active record."""
        store, aggregator = make_aggregator(self_names=["Navi Rao"])
        aggregator.ingest(Candidate(name="Elena"))

        result = aggregator.ingest(Candidate(name="navi rao", company="Recall", summary="Talked demos"))
        active = store.get_active()

        assert result.transition == Transition.UPDATE
        assert active.name == "Elena"
        assert active.company is None
        assert active.summary == "Talked demos"

    def test_is_self_name(self):
        """Test self name matching forms."""
        _, aggregator = make_aggregator(self_names=["Navi Rao"])

        assert aggregator.is_self_name("Navi")
        assert aggregator.is_self_name("NAVI RAO")
        assert not aggregator.is_self_name("Rao")
        assert not aggregator.is_self_name(None)


# ==================== Action Item Tests ====================

class TestActionItems:
    """Tests for fuzzy action item appends."""

    def test_overlapping_item_skipped(self):
        """Test an item sharing most terms with an existing one."""
        existing = [ActionItem("Send pitch deck tonight")]

        items = append_action_items(existing, ["send the pitch deck", "Book a demo next week"])

        assert [a.text for a in items] == ["Send pitch deck tonight", "Book a demo next week"]

    def test_duplicates_within_one_batch(self):
        """Test that items appended earlier in a call count as existing."""
        items = append_action_items([], ["Intro to Sam", "intro to sam", ""])

        assert [a.text for a in items] == ["Intro to Sam"]

    def test_limit(self):
        """Test the optional item cap."""
        items = append_action_items([], ["Call Ana", "Email Ben", "Ship demo"], limit=2)

        assert len(items) == 2

    def test_aggregator_appends_items(self):
        """Test action items across candidates."""
        store, aggregator = make_aggregator()
        aggregator.ingest(Candidate(name="Sam", action_items=["Send pitch deck"]))

        aggregator.ingest(Candidate(action_items=["send the pitch deck", "Intro to Maya"]))

        texts = [a.text for a in store.get_active().action_items]
        assert texts == ["Send pitch deck", "Intro to Maya"]
