from __future__ import annotations

import math
from dataclasses import dataclass, field, replace


@dataclass(frozen=True)
class BudgetCheck:
    fits: bool
    estimated: int
    available: int
    usage: int


@dataclass(frozen=True)
class PromptComponents:
    system: str = ""
    few_shot: str = ""
    session: str = ""
    rag: str = ""
    user: str = ""


@dataclass
class BudgetResult:
    components: PromptComponents
    was_adjusted: bool
    original_tokens: int
    final_tokens: int
    adjustments: list[str] = field(default_factory=list)


class TokenBudgetManager:
    """Keeps a prompt inside the model window by trimming few-shot, then RAG context."""

    CHARS_PER_TOKEN = 3.5

    def __init__(self, max_tokens: int = 8000, reserved_for_output: int = 2000):
        self.max_tokens = max_tokens
        self.reserved_for_output = reserved_for_output
        self.available_budget = max(0, max_tokens - reserved_for_output)

    def estimate_tokens(self, text: str) -> int:
        if not text:
            return 0
        return math.ceil(len(text) / self.CHARS_PER_TOKEN)

    def check_budget(self, prompt: str) -> BudgetCheck:
        estimated = self.estimate_tokens(prompt)
        usage = round((estimated / self.available_budget) * 100) if self.available_budget else 100
        return BudgetCheck(
            fits=estimated <= self.available_budget,
            estimated=estimated,
            available=self.available_budget,
            usage=usage,
        )

    def fit_within_budget(self, components: PromptComponents) -> BudgetResult:
        tokens = {
            "system": self.estimate_tokens(components.system),
            "few_shot": self.estimate_tokens(components.few_shot),
            "session": self.estimate_tokens(components.session),
            "rag": self.estimate_tokens(components.rag),
            "user": self.estimate_tokens(components.user),
        }
        total = sum(tokens.values())
        if total <= self.available_budget:
            return BudgetResult(components, False, total, total)

        adjusted = components
        current = total
        adjustments: list[str] = []

        if current > self.available_budget and components.few_shot:
            target = math.floor(self.available_budget * 0.1)
            if tokens["few_shot"] > target:
                adjusted = replace(adjusted, few_shot=self._truncate_to_tokens(components.few_shot, target))
                current -= tokens["few_shot"] - target
                adjustments.append("few_shot")

        if current > self.available_budget and components.rag:
            target = math.floor(self.available_budget * 0.3)
            if tokens["rag"] > target:
                adjusted = replace(adjusted, rag=self._truncate_to_tokens(components.rag, target))
                current -= tokens["rag"] - target
                adjustments.append("rag")

        return BudgetResult(adjusted, True, total, current, adjustments)

    def _truncate_to_tokens(self, text: str, target_tokens: int) -> str:
        chars = math.floor(target_tokens * self.CHARS_PER_TOKEN)
        if len(text) <= chars:
            return text
        return text[: max(0, chars - 20)] + "\n\n[...]"
