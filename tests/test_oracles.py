"""
Tests for the Recall oracles.

Tests cover:
- Response parsing and validation
- Bounded calls (timeout, failure, usage accounting)
- Extraction oracle
- Identity oracle modes
- LLM clients
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from recall.core.config import OracleConfig
from recall.identity.types import PersonCategory, Record
from recall.oracles.caller import LLMCaller
from recall.oracles.extraction import LLMExtractionOracle
from recall.oracles.identity import LLMIdentityOracle
from recall.oracles.llm import ClaudeClient, MockLLMClient, create_llm_client
from recall.oracles.llm.base import LLMResponse
from recall.oracles.schema import (
    ParseFailure,
    ParseSuccess,
    parse_candidate,
    parse_identity_verdict,
    strip_fences,
)
from recall.oracles.usage import UsageLog


def make_caller(client, timeout=5.0):
    return LLMCaller(client, OracleConfig(provider="mock", timeout=timeout))


# ==================== Schema Tests ====================

class TestParseCandidate:
    """Tests for extraction response parsing."""

    def test_strip_fences(self):
        """Test markdown fence removal."""
        assert strip_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_fences('{"a": 1}') == '{"a": 1}'

    def test_camel_case_payload(self):
        """Test the model's field spelling."""
        content = json.dumps({
            "name": "Elena Vasquez",
            "company": "Figma",
            "category": "vc",
            "actionItems": ["Send deck", "", 5],
            "isNewPerson": True,
            "detectedEvent": "TechSummit",
        })

        result = parse_candidate(content)

        assert isinstance(result, ParseSuccess)
        candidate = result.value
        assert candidate.name == "Elena Vasquez"
        assert candidate.category == PersonCategory.INVESTOR
        assert candidate.action_items == ["Send deck"]
        assert candidate.is_new_person
        assert candidate.detected_event == "TechSummit"

    def test_null_like_strings(self):
        """Test placeholder values become None."""
        result = parse_candidate('{"name": "unknown", "company": " ", "role": null}')

        assert result.value.name is None
        assert result.value.company is None
        assert result.value.is_empty()

    def test_wrapped_entities(self):
        """Test an {"entities": {...}} reply."""
        result = parse_candidate('{"entities": {"name": "Sam"}}')
        assert result.value.name == "Sam"

    def test_json_inside_prose(self):
        """Test a reply that wraps the object in text."""
        result = parse_candidate('Here you go: {"name": "Sam"} hope that helps')
        assert result.value.name == "Sam"

    @pytest.mark.parametrize("content", ["", "not json at all", "[1, 2]", '{"isNewPerson": "maybe"}'])
    def test_malformed(self, content):
        """Test unreadable replies are failures, not exceptions."""
        assert isinstance(parse_candidate(content), ParseFailure)


class TestParseIdentityVerdict:
    """Tests for identity response parsing."""

    def test_valid_items_kept_bad_items_dropped(self):
        """Test per-item validation."""
        content = json.dumps({
            "updates": [
                {"cardId": "r1", "changes": {"role": "CTO", "favoriteColor": "blue"}, "confidence": 95},
                {"cardId": "r2", "changes": {"favoriteColor": "blue"}, "confidence": 80},
            ],
            "merges": [
                {"sourceCardId": "a", "targetCardId": "b", "confidence": 92, "reason": "same"},
                {"sourceCardId": "a", "confidence": 90},
                {"sourceCardId": "a", "targetCardId": "c", "confidence": 150},
            ],
        })

        result = parse_identity_verdict(content)

        assert result.dropped == 3
        assert len(result.value.updates) == 1
        assert result.value.updates[0].changes == {"role": "CTO"}
        assert len(result.value.merges) == 1
        assert result.value.merges[0].source_id == "a"

    def test_action_items_change(self):
        """Test the action item field spelling in updates."""
        content = '{"updates": [{"recordId": "r1", "changes": {"actionItems": "Book demo"}, "confidence": 70}]}'

        result = parse_identity_verdict(content)

        assert result.value.updates[0].changes == {"action_items": ["Book demo"]}

    def test_missing_lists(self):
        """Test an object without updates or merges."""
        result = parse_identity_verdict("{}")
        assert result.value.is_empty()


# ==================== Caller Tests ====================

class TestLLMCaller:
    """Tests for bounded oracle calls."""

    @pytest.mark.asyncio
    async def test_success_recorded(self):
        """Test usage accounting for a successful call."""
        caller = make_caller(MockLLMClient(['{"name": "Sam"}']))

        response = await caller.call("extract", "system", "prompt")

        assert response.content == '{"name": "Sam"}'
        entry = caller.usage.entries()[0]
        assert entry.success
        assert entry.route == "extract"
        assert entry.total_tokens == 150

    @pytest.mark.asyncio
    async def test_timeout_is_none(self):
        """Test that a slow model never blocks the caller."""
        caller = make_caller(MockLLMClient(delay=0.5), timeout=0.01)

        response = await caller.call("reconcile", "system", "prompt")

        assert response is None
        entry = caller.usage.entries()[0]
        assert not entry.success
        assert "timeout" in entry.error

    @pytest.mark.asyncio
    async def test_error_is_none(self):
        """Test that transport errors fail open."""
        caller = make_caller(MockLLMClient(error=RuntimeError("boom")))

        response = await caller.call("dedup", "system", "prompt")

        assert response is None
        assert caller.usage.entries()[0].error == "boom"


class TestUsageLog:
    """Tests for the usage ring buffer."""

    def test_oldest_dropped(self):
        """Test the entry bound."""
        log = UsageLog(max_entries=2)
        for route in ("extract", "reconcile", "dedup"):
            log.record_success(route, "mock", LLMResponse("{}", "mock-model", 1, 2))

        assert len(log) == 2
        assert [e.route for e in log.entries()] == ["dedup", "reconcile"]

    def test_summary(self):
        """Test per-route totals."""
        log = UsageLog()
        log.record_success("extract", "mock", LLMResponse("{}", "m", 10, 5))
        log.record_failure("extract", "mock", "m", "timeout")

        summary = log.summary()

        assert summary["extract"]["calls"] == 2
        assert summary["extract"]["failures"] == 1
        assert summary["extract"]["tokens"] == 15


# ==================== Extraction Oracle Tests ====================

class TestExtractionOracle:
    """Tests for the LLM extraction oracle."""

    @pytest.mark.asyncio
    async def test_extract_candidate(self):
        """Test a fenced reply becomes a candidate."""
        reply = '```json\n{"name": "Elena", "company": "Figma", "category": "designer"}\n```'
        client = MockLLMClient([reply])
        oracle = LLMExtractionOracle(make_caller(client), self_names=["Navi"])

        candidate = await oracle.extract(
            "Hi, I'm Elena and I design at Figma",
            known=Record(name="Elena"),
            event_context="TechSummit",
        )

        assert candidate.name == "Elena"
        assert candidate.category == PersonCategory.DESIGNER
        system, prompt = client.calls[0]
        assert '"Navi"' in system
        assert "TechSummit" in prompt
        assert "Previously extracted data" in prompt

    @pytest.mark.asyncio
    async def test_short_transcript_skipped(self):
        """Test that tiny windows never reach the model."""
        client = MockLLMClient()
        oracle = LLMExtractionOracle(make_caller(client))

        assert await oracle.extract("hi") is None
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_empty_and_malformed_replies(self):
        """Test replies that carry nothing usable."""
        client = MockLLMClient(["{}", "garbage"])
        oracle = LLMExtractionOracle(make_caller(client))

        assert await oracle.extract("Some conversation text here") is None
        assert await oracle.extract("Some conversation text here") is None

    @pytest.mark.asyncio
    async def test_new_person_without_fields(self):
        """Test that a bare new-person signal is still returned."""
        oracle = LLMExtractionOracle(make_caller(MockLLMClient(['{"isNewPerson": true}'])))

        candidate = await oracle.extract("Oh hey, who's your friend here?")

        assert candidate.is_new_person
        assert candidate.is_empty()


# ==================== Identity Oracle Tests ====================

class TestIdentityOracle:
    """Tests for the LLM identity oracle."""

    @pytest.mark.asyncio
    async def test_pair_mode_filters_unknown_ids(self):
        """Test pair judgements with a hallucinated id."""
        a, b = Record(name="Alex"), Record(name="Alex Kim")
        reply = json.dumps({
            "updates": [{"cardId": a.id, "changes": {"role": "CTO"}, "confidence": 99}],
            "merges": [
                {"sourceCardId": a.id, "targetCardId": b.id, "confidence": 85},
                {"sourceCardId": a.id, "targetCardId": "ghost", "confidence": 99},
            ],
        })
        client = MockLLMClient([reply])
        caller = make_caller(client)
        oracle = LLMIdentityOracle(caller)

        verdict = await oracle.reconcile([a, b], candidate_pairs=[(a.id, b.id)])

        assert verdict.updates == []
        assert [(m.source_id, m.target_id) for m in verdict.merges] == [(a.id, b.id)]
        assert caller.usage.entries()[0].route == "reconcile/dedup"

    @pytest.mark.asyncio
    async def test_reconcile_mode(self):
        """Test transcript review."""
        record = Record(name="Maya Chen")
        reply = json.dumps({"updates": [{"cardId": record.id, "changes": {"company": "Stripe"}, "confidence": 95}]})
        client = MockLLMClient([reply])
        oracle = LLMIdentityOracle(make_caller(client), self_names=["Navi"])

        verdict = await oracle.reconcile([record], transcript="Maya said she works at Stripe on payments")

        assert verdict.updates[0].changes == {"company": "Stripe"}
        assert verdict.merges == []

    @pytest.mark.asyncio
    async def test_short_transcript_and_single_record(self):
        """Test inputs that never reach the model."""
        client = MockLLMClient()
        oracle = LLMIdentityOracle(make_caller(client))

        assert (await oracle.reconcile([Record(name="A")], transcript="hi")).is_empty()
        assert (await oracle.reconcile([Record(name="A")])).is_empty()
        assert (await oracle.reconcile([])).is_empty()
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_failure_is_empty_verdict(self):
        """Test fail-open behavior."""
        oracle = LLMIdentityOracle(make_caller(MockLLMClient(error=RuntimeError("down"))))

        verdict = await oracle.reconcile([Record(name="A"), Record(name="B")])

        assert verdict.is_empty()


# ==================== LLM Client Tests ====================

class TestLLMClients:
    """Tests for client construction and the Claude adapter."""

    def test_factory(self):
        """Test provider selection."""
        assert isinstance(create_llm_client(OracleConfig(provider="mock")), MockLLMClient)

        client = create_llm_client(OracleConfig(model="claude-test"), api_key="sk-test")
        assert isinstance(client, ClaudeClient)
        assert client.get_model_name() == "claude-test"

    @pytest.mark.asyncio
    async def test_mock_replies_cycle(self):
        """Test canned and callable replies."""
        client = MockLLMClient(["first", lambda prompt, system: prompt.upper()])

        assert (await client.complete("a")).content == "first"
        assert (await client.complete("b")).content == "B"
        assert (await client.complete("c")).content == "first"

    @pytest.mark.asyncio
    async def test_claude_requires_initialize(self):
        """Test calling before initialize."""
        client = ClaudeClient(api_key="sk-test")

        with pytest.raises(RuntimeError):
            await client.complete("hello")

    @pytest.mark.asyncio
    async def test_claude_response_conversion(self):
        """Test text blocks and usage are read from the API response."""
        client = ClaudeClient(api_key="sk-test", default_model="claude-test")
        api_response = MagicMock(
            content=[MagicMock(type="text", text='{"name": '), MagicMock(type="text", text='"Sam"}')],
            model="claude-test",
            usage=MagicMock(input_tokens=12, output_tokens=7),
        )
        client._client = MagicMock()
        client._client.messages.create = AsyncMock(return_value=api_response)

        response = await client.complete("prompt", system="system", max_tokens=100)

        assert response.content == '{"name": "Sam"}'
        assert response.total_tokens == 19
        kwargs = client._client.messages.create.call_args.kwargs
        assert kwargs["system"] == "system"
        assert kwargs["max_tokens"] == 100
        assert kwargs["model"] == "claude-test"

    @pytest.mark.asyncio
    async def test_caller_with_slow_claude(self):
        """Test a hung API call is bounded by the caller timeout."""
        client = ClaudeClient(api_key="sk-test")

        async def hang(**kwargs):
            await asyncio.sleep(1)

        client._client = MagicMock()
        client._client.messages.create = hang

        assert await make_caller(client, timeout=0.01).call("extract", "s", "p") is None
