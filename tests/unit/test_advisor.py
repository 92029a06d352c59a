"""
Unit tests for crew suggestions.

The Gemini client is replaced with a fake exposing generate_content(); no
network calls are made.
"""
import json
from types import SimpleNamespace

import pytest

from models import Availability
from scheduler.advisor import CrewAdvisor
from scheduler.allocator import ResourceAllocator
from scheduler.scoring import ResourceScorer
from tests.factories import ADAMA, HQ, PARLIAMENT, at, create_test_resource, window


class FakeModel:
    def __init__(self, text=None, error=None, usage=None):
        self.text = text
        self.error = error
        self.usage = usage
        self.prompts = []

    def generate_content(self, prompt, generation_config=None):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(text=self.text, usage_metadata=self.usage)


@pytest.fixture
def allocator(store):
    return ResourceAllocator(store, ResourceScorer())


@pytest.fixture
def crew(store):
    near = create_test_resource(store, name="Near", location=PARLIAMENT)
    far = create_test_resource(store, name="Far", location=ADAMA)
    create_test_resource(store, name="Broken", availability=Availability.MAINTENANCE, location=HQ)
    return near, far


def _advisor(allocator, settings, model=None):
    return CrewAdvisor(allocator, settings, model=model)


class TestRuleBased:
    def test_without_key_uses_rules(self, allocator, settings, crew, now):
        near, far = crew
        advisor = _advisor(allocator, settings)
        assert advisor.model is None

        picks = advisor.suggest("cameraman", window(at(10)), PARLIAMENT, now)

        assert [p.resource_id for p in picks] == [near.id, far.id]
        assert all(p.source == "rules" for p in picks)
        assert picks[0].score > picks[1].score
        assert picks[0].reason

    def test_limit_and_empty_category(self, allocator, settings, crew, now):
        advisor = _advisor(allocator, settings)
        assert len(advisor.suggest("cameraman", window(at(10)), PARLIAMENT, now, limit=1)) == 1
        assert advisor.suggest("drone", window(at(10)), PARLIAMENT, now) == []


class TestModelBacked:
    def test_model_order_wins(self, allocator, settings, crew, now):
        near, far = crew
        model = FakeModel(json.dumps([
            {"resource_id": far.id, "score": 0.9, "reason": "Knows the venue"},
            {"resource_id": near.id, "score": 0.6, "reason": "Closest"},
        ]))
        picks = _advisor(allocator, settings, model).suggest(
            "cameraman", window(at(10)), PARLIAMENT, now, event_title="Budget speech"
        )

        assert [(p.resource_id, p.source) for p in picks] == [(far.id, "model"), (near.id, "model")]
        assert picks[0].name == "Far"
        assert "Budget speech" in model.prompts[0]

    def test_invented_duplicate_and_malformed_picks_are_dropped(self, allocator, settings, crew, now):
        near, _ = crew
        model = FakeModel("```json\n" + json.dumps({"suggestions": [
            {"resource_id": "res_ghost", "score": 1.0},
            {"resource_id": near.id, "score": 0.8},
            {"resource_id": near.id, "score": 0.7},
            {"score": 0.5},
        ]}) + "\n```")
        picks = _advisor(allocator, settings, model).suggest("cameraman", window(at(10)), PARLIAMENT, now)
        assert [p.resource_id for p in picks] == [near.id]

    def test_unavailable_resource_never_reaches_the_model(self, allocator, settings, crew, now):
        model = FakeModel("[]")
        _advisor(allocator, settings, model).suggest("cameraman", window(at(10)), PARLIAMENT, now)
        assert "Broken" not in model.prompts[0]

    @pytest.mark.parametrize("model", [
        FakeModel(error=RuntimeError("quota exceeded")),
        FakeModel("not json at all"),
        FakeModel("[]"),
    ])
    def test_failures_fall_back_to_rules(self, allocator, settings, crew, now, model):
        picks = _advisor(allocator, settings, model).suggest("cameraman", window(at(10)), PARLIAMENT, now)
        assert [p.source for p in picks] == ["rules", "rules"]

    def test_usage_is_costed(self, allocator, settings, crew, now):
        near, _ = crew
        usage = SimpleNamespace(prompt_token_count=1_000_000, candidates_token_count=0)
        model = FakeModel(json.dumps([{"resource_id": near.id}]), usage=usage)
        advisor = _advisor(allocator, settings, model)
        advisor.suggest("cameraman", window(at(10)), PARLIAMENT, now)
        assert advisor.total_cost == pytest.approx(0.075)


class TestParseJson:
    @pytest.mark.parametrize("raw,expected", [
        ('[{"resource_id": "a"}]', [{"resource_id": "a"}]),
        ('{"crew": [{"resource_id": "b"}]}', [{"resource_id": "b"}]),
        ('{"resource_id": "c"}', [{"resource_id": "c"}]),
        ('Here you go: [{"resource_id": "d"}] hope it helps', [{"resource_id": "d"}]),
        ("", []),
        ("42", []),
    ])
    def test_shapes(self, allocator, settings, raw, expected):
        assert _advisor(allocator, settings)._robust_parse_json(raw) == expected
