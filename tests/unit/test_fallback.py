"""Tests for the degraded-mode fallback generator."""

import json
import re

import pytest

from resilient_llm.errors import ErrorKind, LlmError
from resilient_llm.resilience import (
    FALLBACK_MODEL,
    FALLBACK_PROVIDER_ID,
    FallbackGenerator,
    FallbackPattern,
)


@pytest.fixture
def generator() -> FallbackGenerator:
    return FallbackGenerator()


class TestPatternMatching:
    """Tests for category selection."""

    @pytest.mark.parametrize(
        ("prompt", "category"),
        [
            ("mine some iron", "mine"),
            ("dig a tunnel", "mine"),
            ("build a house", "build"),
            ("construct a shelter", "build"),
            ("attack the zombie", "attack"),
            ("kill that creeper", "attack"),
            ("follow me", "follow"),
            ("go to the village", "pathfind"),
            ("navigate north", "pathfind"),
            ("place a torch", "place_block"),
            ("put down a door", "place_block"),
            ("stop", "wait"),
            ("pause for a bit", "wait"),
        ],
    )
    def test_categories(self, generator: FallbackGenerator, prompt: str, category: str) -> None:
        assert generator.match_category(prompt) == category

    def test_no_match(self, generator: FallbackGenerator) -> None:
        assert generator.match_category("tell me a joke") is None
        assert not generator.would_match_pattern("tell me a joke")

    def test_first_match_wins(self, generator: FallbackGenerator) -> None:
        """Mining is checked before building."""
        assert generator.match_category("mine stone then build a house") == "mine"

    def test_case_insensitive(self, generator: FallbackGenerator) -> None:
        assert generator.match_category("MINE SOME IRON") == "mine"

    def test_multiline_prompt(self, generator: FallbackGenerator) -> None:
        assert generator.match_category("please\nmine\nthe iron") == "mine"

    def test_empty_and_none(self, generator: FallbackGenerator) -> None:
        assert generator.match_category(None) is None
        assert generator.match_category("") is None

    def test_pattern_count(self, generator: FallbackGenerator) -> None:
        assert generator.pattern_count == 7


class TestGenerate:
    """Tests for generated responses."""

    def test_mine_content(self, generator: FallbackGenerator) -> None:
        response = generator.generate("mine 10 iron ore")
        assert response.content == (
            '{"thoughts":"[Fallback] Mining action detected",'
            '"tasks":[{"action":"mine","target":"iron_ore","quantity":10}]}'
        )

    def test_default_content(self, generator: FallbackGenerator) -> None:
        response = generator.generate("tell me a joke")
        assert json.loads(response.content) == {
            "thoughts": "[Fallback] No pattern matched, waiting",
            "tasks": [{"action": "wait", "duration": 5}],
        }

    @pytest.mark.parametrize("prompt", [None, ""])
    def test_missing_prompt_gets_default(
        self, generator: FallbackGenerator, prompt: str | None
    ) -> None:
        plan = json.loads(generator.generate(prompt).content)
        assert plan["tasks"] == [{"action": "wait", "duration": 5}]

    def test_response_fields(self, generator: FallbackGenerator) -> None:
        cause = LlmError("down", kind=ErrorKind.SERVER_ERROR, provider_id="openai")
        response = generator.generate("attack the zombie", cause=cause)
        assert response.provider_id == FALLBACK_PROVIDER_ID == "fallback"
        assert response.model == FALLBACK_MODEL
        assert response.tokens_used == 0
        assert response.latency_ms == 0
        assert response.from_cache is False

    @pytest.mark.parametrize(
        "prompt",
        ["build a house", "follow me", "go to the village", "place a torch", "stop"],
    )
    def test_every_plan_is_valid_json(self, generator: FallbackGenerator, prompt: str) -> None:
        plan = json.loads(generator.generate(prompt).content)
        assert plan["thoughts"].startswith("[Fallback]")
        assert len(plan["tasks"]) == 1

    def test_custom_patterns(self) -> None:
        custom = FallbackPattern(
            category="greet",
            pattern=re.compile(r".*hello.*"),
            thoughts="[Fallback] Greeting",
            tasks=({"action": "chat", "message": "hi"},),
        )
        generator = FallbackGenerator(patterns=(custom,))
        assert generator.pattern_count == 1
        plan = json.loads(generator.generate("Hello there").content)
        assert plan["tasks"] == [{"action": "chat", "message": "hi"}]
