"""
Degraded-mode response generation.

When a provider call cannot complete, the executor answers with a canned
action plan chosen by matching the prompt against a fixed, ordered list of
command categories. Generation is pure: no I/O, no shared state, never fails.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

from resilient_llm.telemetry import get_logger, truncate
from resilient_llm.types import LlmResponse

logger = get_logger("resilient_llm.resilience.fallback")

FALLBACK_PROVIDER_ID = "fallback"
FALLBACK_MODEL = "fallback-pattern-matcher"


@dataclass(frozen=True)
class FallbackPattern:
    """One command category and the plan it maps to.

    Attributes:
        category: Category name (e.g. "mine")
        pattern: Regex that must match the whole lowercased prompt
        thoughts: Plan commentary, prefixed with ``[Fallback]``
        tasks: Task list emitted in the plan
    """

    category: str
    pattern: re.Pattern[str]
    thoughts: str
    tasks: tuple[dict[str, Any], ...]

    def matches(self, lowered_prompt: str) -> bool:
        return self.pattern.fullmatch(lowered_prompt) is not None

    def render(self) -> str:
        return _render_plan(self.thoughts, self.tasks)


def _render_plan(thoughts: str, tasks: tuple[dict[str, Any], ...]) -> str:
    return json.dumps(
        {"thoughts": thoughts, "tasks": list(tasks)}, separators=(",", ":")
    )


def _compile(expr: str) -> re.Pattern[str]:
    return re.compile(expr, re.DOTALL)


# Evaluated in order; the first full match wins.
DEFAULT_PATTERNS: tuple[FallbackPattern, ...] = (
    FallbackPattern(
        category="mine",
        pattern=_compile(r".*(mine|dig|collect|gather|ore|diamond|iron|coal|stone).*"),
        thoughts="[Fallback] Mining action detected",
        tasks=({"action": "mine", "target": "iron_ore", "quantity": 10},),
    ),
    FallbackPattern(
        category="build",
        pattern=_compile(
            r".*(build|construct|create|make).*(house|home|shelter|structure|base).*"
        ),
        thoughts="[Fallback] Building action detected",
        tasks=({"action": "build", "structure": "house", "size": "small"},),
    ),
    FallbackPattern(
        category="attack",
        pattern=_compile(
            r".*(attack|fight|kill|destroy|hostile|monster|zombie|skeleton|creeper).*"
        ),
        thoughts="[Fallback] Combat action detected",
        tasks=({"action": "attack", "target": "nearest_hostile"},),
    ),
    FallbackPattern(
        category="follow",
        pattern=_compile(r".*(follow|come|here|with me|accompany).*"),
        thoughts="[Fallback] Follow action detected",
        tasks=({"action": "follow", "target": "player"},),
    ),
    FallbackPattern(
        category="pathfind",
        pattern=_compile(r".*(go to|move to|walk to|travel|path|navigate).*"),
        thoughts="[Fallback] Movement action detected",
        tasks=({"action": "pathfind", "target": "player"},),
    ),
    FallbackPattern(
        category="place_block",
        pattern=_compile(r".*(place|put|set).*(block|torch|door).*"),
        thoughts="[Fallback] Placement action detected",
        tasks=({"action": "place_block", "block": "torch", "position": "here"},),
    ),
    FallbackPattern(
        category="wait",
        pattern=_compile(r".*(stop|halt|cancel|wait|pause|stay).*"),
        thoughts="[Fallback] Stop action detected",
        tasks=({"action": "wait", "duration": 5},),
    ),
)

DEFAULT_RESPONSE = _render_plan(
    "[Fallback] No pattern matched, waiting", ({"action": "wait", "duration": 5},)
)


class FallbackGenerator:
    """Pattern-matching degraded-mode responder.

    Example:
        >>> generator = FallbackGenerator()
        >>> response = generator.generate("mine 10 iron ore", cause=error)
        >>> response.provider_id
        'fallback'
        >>> json.loads(response.content)["tasks"][0]["action"]
        'mine'
    """

    def __init__(self, patterns: tuple[FallbackPattern, ...] = DEFAULT_PATTERNS) -> None:
        self._patterns = patterns

    @property
    def pattern_count(self) -> int:
        """Number of registered categories."""
        return len(self._patterns)

    def _find(self, prompt: str | None) -> FallbackPattern | None:
        if not prompt:
            return None
        lowered = prompt.lower()
        for entry in self._patterns:
            if entry.matches(lowered):
                logger.debug("Fallback pattern matched", category=entry.category)
                return entry
        return None

    def match_category(self, prompt: str | None) -> str | None:
        """Name of the first matching category, or None for the default."""
        entry = self._find(prompt)
        return entry.category if entry else None

    def would_match_pattern(self, prompt: str | None) -> bool:
        """Check if a prompt would match any category."""
        return self._find(prompt) is not None

    def generate(self, prompt: str | None, cause: BaseException | None = None) -> LlmResponse:
        """Build the degraded-mode response for a failed call.

        Args:
            prompt: Original prompt (may be None or empty)
            cause: The error that triggered the fallback, for logging

        Returns:
            Response from provider "fallback" with zero tokens and latency
        """
        logger.warning(
            "Generating fallback response",
            prompt=truncate(prompt, 50),
            error=f"{type(cause).__name__}: {cause}" if cause is not None else "unknown",
        )

        entry = self._find(prompt)
        content = entry.render() if entry else DEFAULT_RESPONSE
        logger.info(
            "Fallback response generated",
            matched=entry.category if entry else "default",
        )

        return LlmResponse(
            content=content,
            model=FALLBACK_MODEL,
            provider_id=FALLBACK_PROVIDER_ID,
            tokens_used=0,
            latency_ms=0,
            from_cache=False,
        )
