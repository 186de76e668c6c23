"""
Tests — LLM gateway retry/routing and the dedup oracle's parsing + degradation.
"""

import json

import pytest

from activity_core.ai import gateway as gateway_module
from activity_core.ai.dedup_oracle import DedupPair, LLMDedupOracle
from activity_core.ai.gateway import LLMGateway, LLMProvider, provider_for_model


class _FakeGateway:
    """Stands in for LLMGateway; returns canned content or raises."""

    def __init__(self, content=None, error=None, available=True):
        self.content = content
        self.error = error
        self.available = available
        self.calls = []

    def is_available(self):
        return self.available

    def chat(self, messages, model=None, **kwargs):
        self.calls.append({"messages": messages, "model": model, **kwargs})
        if self.error:
            raise self.error
        return {"content": self.content}


class _FlakyProvider(LLMProvider):
    default_model = "fake-model"

    def __init__(self, failures):
        super().__init__()
        self.failures = failures
        self.attempts = 0

    def _build_client(self):
        return None

    def chat(self, messages, model, **kwargs):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise ConnectionError("timeout")
        return {"content": "{}", "prompt_tokens": 1, "completion_tokens": 1, "model": model}


def _pairs(n=2):
    return [
        DedupPair(
            new_item={"type": "task", "name": f"New {i}"},
            existing_item={"type": "task", "name": f"Old {i}", "id": f"old-{i}"},
        )
        for i in range(n)
    ]


# ═══════════════════════════════════════════════════════════════════════════
#  Oracle
# ═══════════════════════════════════════════════════════════════════════════

class TestDedupOracle:

    def test_parses_decisions(self):
        content = json.dumps({"decisions": [
            {"pair_index": 0, "is_duplicate": True, "confidence": 0.95, "reason": "same"},
            {"pair_index": 1, "is_duplicate": False, "confidence": 0.2, "reason": "different"},
        ]})
        decisions = LLMDedupOracle(_FakeGateway(content)).decide_batch(_pairs())

        assert decisions[0].is_duplicate is True
        assert decisions[0].confidence == 0.95
        assert decisions[0].merge_into_id == "old-0"
        assert decisions[1].is_duplicate is False
        assert decisions[1].merge_into_id is None

    def test_missing_pair_gets_default(self):
        content = json.dumps({"decisions": [
            {"pair_index": 1, "is_duplicate": True, "confidence": 0.9, "reason": "same"},
        ]})
        decisions = LLMDedupOracle(_FakeGateway(content)).decide_batch(_pairs())
        assert decisions[0].is_duplicate is False
        assert decisions[0].reason == "LLM did not return decision for this pair"
        assert decisions[1].is_duplicate is True

    def test_json_inside_prose(self):
        content = 'Sure! {"decisions": [{"pair_index": 0, "is_duplicate": "true", "confidence": 1.7}]} Done.'
        decision = LLMDedupOracle(_FakeGateway(content)).decide_batch(_pairs(1))[0]
        assert decision.is_duplicate is True
        assert decision.confidence == 1.0

    def test_camel_case_keys_accepted(self):
        content = json.dumps({"decisions": [
            {"pairIndex": 0, "isDuplicate": True, "confidence": 0.8},
        ]})
        assert LLMDedupOracle(_FakeGateway(content)).decide_batch(_pairs(1))[0].is_duplicate

    @pytest.mark.parametrize("gateway,reason", [
        (_FakeGateway(available=False), "LLM unavailable"),
        (_FakeGateway(error=RuntimeError("boom")), "LLM call failed: boom"),
        (_FakeGateway("not json at all"), "Unparseable LLM response"),
        (_FakeGateway('["a", "list"]'), "Unparseable LLM response"),
    ])
    def test_degrades_to_not_duplicate(self, gateway, reason):
        decisions = LLMDedupOracle(gateway).decide_batch(_pairs())
        assert len(decisions) == 2
        assert all(not d.is_duplicate and d.confidence == 0.0 for d in decisions)
        assert decisions[0].reason == reason

    def test_no_gateway_means_unavailable(self):
        assert LLMDedupOracle().decide_batch(_pairs(1))[0].reason == "LLM unavailable"

    def test_empty_batch_skips_llm(self):
        gw = _FakeGateway("{}")
        assert LLMDedupOracle(gw).decide_batch([]) == []
        assert gw.calls == []

    def test_prompt_lists_every_pair(self):
        gw = _FakeGateway(json.dumps({"decisions": []}))
        pairs = _pairs(2)
        pairs[0].activity_context = "Embedding similarity 0.91"
        LLMDedupOracle(gw, model="gpt-4o-mini").decide_batch(pairs)

        call = gw.calls[0]
        assert call["model"] == "gpt-4o-mini"
        assert call["purpose"] == "dedup_decision"
        assert call["messages"][0]["role"] == "system"
        user = call["messages"][1]["content"]
        assert "Pair 0:" in user and "Pair 1:" in user
        assert 'NEW: task: "New 1"' in user
        assert "Embedding similarity 0.91" in user


# ═══════════════════════════════════════════════════════════════════════════
#  Gateway
# ═══════════════════════════════════════════════════════════════════════════

class TestLLMGateway:

    @pytest.fixture(autouse=True)
    def _no_keys(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    def test_unavailable_without_keys(self, app):
        gw = LLMGateway(app=app)
        assert gw.is_available() is False
        with pytest.raises(RuntimeError, match="No LLM provider configured"):
            gw.chat([{"role": "user", "content": "hi"}])

    def test_reads_timeout_and_model_from_config(self, app):
        gw = LLMGateway(app=app)
        assert gw.timeout == app.config["LLM_TIMEOUT_SECONDS"]
        assert gw.default_model == app.config["LLM_DEFAULT_CHAT_MODEL"]

    def test_registers_provider_when_key_present(self, app, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        gw = LLMGateway(app=app)
        assert gw.is_available()
        provider, name, model = gw._get_provider("claude-3-5-haiku-20241022")
        assert name == "openai"
        assert model == "gpt-4o-mini"

    def test_retries_with_backoff(self, monkeypatch):
        sleeps = []
        monkeypatch.setattr(gateway_module.time, "sleep", sleeps.append)
        gw = LLMGateway()
        provider = _FlakyProvider(failures=2)
        gw._providers = {"fake": provider}

        result = gw.chat([{"role": "user", "content": "hi"}], model="fake-model")

        assert provider.attempts == 3
        assert sleeps == [1, 2]
        assert result["provider"] == "fake"
        assert "latency_ms" in result

    def test_gives_up_after_max_retries(self, monkeypatch):
        monkeypatch.setattr(gateway_module.time, "sleep", lambda s: None)
        gw = LLMGateway()
        gw._providers = {"fake": _FlakyProvider(failures=10)}
        with pytest.raises(RuntimeError, match="after 3 retries"):
            gw.chat([{"role": "user", "content": "hi"}])

    @pytest.mark.parametrize("model,provider", [
        ("claude-3-5-haiku-20241022", "anthropic"),
        ("gpt-4o-mini", "openai"),
        ("o3-mini", "openai"),
        ("mistral-large", None),
    ])
    def test_provider_for_model(self, model, provider):
        assert provider_for_model(model) == provider
