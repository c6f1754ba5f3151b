"""
Tests for the Query Resolver.

Tests cover:
- Voice query detection and continuation
- Record scoring
- Match stability while the description streams in
"""

from recall.identity.query import (
    QueryResolver,
    detect_voice_query,
    is_query_continuation,
    score_record,
    score_records,
)
from recall.identity.types import ActionItem, PersonCategory, Record


def people():
    return [
        Record(
            name="Maya Chen",
            company="Stripe",
            role="Engineer",
            category=PersonCategory.DEVELOPER,
            summary="Works on payments infrastructure",
        ),
        Record(name="Tom Diaz", company="Figma", role="Product Designer", category=PersonCategory.DESIGNER),
    ]


# ==================== Voice Query Tests ====================

class TestVoiceQuery:
    """Tests for trigger detection."""

    def test_trigger_with_description(self):
        """Test the text after a trigger becomes the query."""
        query = detect_voice_query("Recall, who was the designer from Figma?")

        assert query.is_query
        assert query.query_text == "the designer from Figma"

    def test_trigger_without_description(self):
        """Test a bare trigger keeps the whole utterance."""
        query = detect_voice_query("What was her name")

        assert query.is_query
        assert query.query_text == "What was her name"

    def test_normal_speech(self):
        """Test conversation is not a query."""
        assert not detect_voice_query("Great to meet you, I work at Stripe").is_query
        assert not detect_voice_query("").is_query

    def test_continuation(self):
        """Test follow-up description detection."""
        assert is_query_continuation("and she works at Figma")
        assert is_query_continuation("the one who builds design tools")
        assert not is_query_continuation("ok")
        assert not is_query_continuation("Great weather today")

    def test_company_name_continuation(self):
        """Test a bare company mention continues an open query."""
        assert is_query_continuation("Stripe, I think")
        assert is_query_continuation("OpenAI maybe")
        assert not is_query_continuation("Metallica concert")


# ==================== Scoring Tests ====================

class TestScoring:
    """Tests for record scoring."""

    def test_full_name(self):
        """Test a full-name mention."""
        match = score_record("I met Maya Chen at the mixer", people()[0])

        assert match.score >= 100
        assert "full name" in match.reasons

    def test_company_role_category(self):
        """Test clues adding up."""
        match = score_record("the designer from Figma", people()[1])

        # company 40 + role keyword 20 + category 15
        assert match.score == 75

    def test_summary_and_action_items(self):
        """Test capped keyword points."""
        record = Record(
            name="Zed Ortiz",
            summary="loves hiking trips",
            action_items=[ActionItem("Send hiking trail list")],
        )

        match = score_record("the hiking person", record)

        assert match.score == 5 + 8

    def test_unnamed_and_zero_scores_dropped(self):
        """Test score_records filtering and ordering."""
        records = people() + [Record(company="Figma")]

        scored = score_records("Figma", records)

        assert [s.record.name for s in scored] == ["Tom Diaz"]

    def test_empty_description(self):
        """Test an empty description scores nothing."""
        assert score_records("  ", people()) == []


# ==================== Resolution Tests ====================

class TestQueryResolver:
    """Tests for match resolution and hysteresis."""

    def test_no_match_below_threshold(self):
        """Test founder fintech against unrelated records."""
        resolver = QueryResolver()
        resolver.append("founder fintech")

        resolution = resolver.resolve(people())

        assert resolution.match is None
        assert resolution.scores == ()

    def test_minimum_score(self):
        """Test a weak clue is not a match."""
        resolver = QueryResolver()
        resolver.append("hiking")

        resolution = resolver.resolve([Record(name="Zed Ortiz", summary="loves hiking trips")])

        assert resolution.match is None
        assert len(resolution.scores) == 1

    def test_partial_then_clear_winner(self):
        """Test the match moves when a much stronger candidate appears."""
        stitch = Record(name="Ana Ruiz", company="Stitch Labs")
        stripe = Record(name="Ben Okafor", company="Stripe", role="Payments Lead")
        resolver = QueryResolver()

        resolver.append("works at Sti")
        first = resolver.resolve([stitch, stripe])
        resolver.append("works at Stripe leads payments")
        second = resolver.resolve([stitch, stripe])

        assert first.record_id == stitch.id
        assert first.changed
        assert second.record_id == stripe.id
        assert second.changed

    def test_previous_match_kept_within_ratio(self):
        """Test a marginally better candidate does not steal the match."""
        stitch = Record(name="Ana Ruiz", company="Stitch Labs")
        payments = Record(name="Ben Okafor", role="Payments")
        resolver = QueryResolver()

        resolver.append("works at Sti")
        resolver.resolve([stitch, payments])
        resolver.append("payments")
        resolution = resolver.resolve([stitch, payments])

        assert resolution.scores[0].record.id == payments.id
        assert resolution.record_id == stitch.id
        assert not resolution.changed

    def test_reset(self):
        """Test clearing the accumulated description."""
        resolver = QueryResolver()
        resolver.append("designer")
        resolver.resolve(people())

        resolver.reset()

        assert not resolver.active
        assert resolver.state.previous_match_id is None
