"""
Model tables and model selection for the xAI Grok API.

Aliases, fallbacks for retired model ids, per-1M-token pricing, API tier
rate limits, and the weighted keyword heuristic behind the ``auto`` alias.
"""

import math
import re
from dataclasses import dataclass, field
from typing import Optional

# Constants
DEFAULT_TIMEOUT_MS = 30_000
SLOW_MODEL_TIMEOUT_MS = 90_000

MODEL_ALIASES = {
    "auto": "grok-4-0709",
    "default": "grok-4-0709",
    "fast": "grok-4-fast-non-reasoning",
    "smartest": "grok-4-0709",
    "code": "grok-code-fast-1",
    "reasoning": "grok-4-1-fast-reasoning",
    "cheap": "grok-4-fast-non-reasoning",
    "vision": "grok-4-0709",
    "image": "grok-2-image-1212",
}

MODEL_FALLBACKS = {
    "grok-3-beta": "grok-3",
    "grok-3-mini-beta": "grok-3-mini",
    "grok-4": "grok-4-0709",
    "grok-4-fast": "grok-4-fast-non-reasoning",
    "grok-4.1-fast": "grok-4-1-fast-reasoning",
}

VISION_CAPABLE_MODELS = [
    "grok-4-0709",
    "grok-4",
    "grok-2-vision-1212",
]

# USD per 1M tokens
MODEL_PRICING = {
    "grok-4-0709": {"input": 3.0, "output": 15.0},
    "grok-4-fast-non-reasoning": {"input": 0.2, "output": 0.5},
    "grok-4-fast-reasoning": {"input": 0.2, "output": 0.5},
    "grok-4-1-fast": {"input": 0.2, "output": 0.5},
    "grok-4-1-fast-non-reasoning": {"input": 0.2, "output": 0.5},
    "grok-4-1-fast-reasoning": {"input": 0.2, "output": 0.5},
    "grok-code-fast-1": {"input": 0.2, "output": 1.5},
    "grok-3": {"input": 0.3, "output": 0.5},
    "grok-3-mini": {"input": 0.1, "output": 0.2},
    "grok-2-1212": {"input": 2.0, "output": 10.0},
    "grok-2-vision-1212": {"input": 2.0, "output": 10.0},
    "grok-2-image-1212": {"input": 2.0, "output": 10.0},
}

DEFAULT_PRICING = {"input": 2.0, "output": 10.0}

# USD per generated image
IMAGE_PRICING = {
    "grok-2-image-1212": 0.003,
}
DEFAULT_IMAGE_PRICE = 0.003
DEFAULT_IMAGE_MODEL = "grok-2-image-1212"

RATE_LIMITS = {
    "standard": {"tokens_per_minute": 500_000, "requests_per_minute": 500},
    "enterprise": {"tokens_per_minute": 10_000_000, "requests_per_minute": 10_000},
}

# Model chosen for each auto-selection category
CATEGORY_MODELS = {
    "code": "grok-code-fast-1",
    "reasoning": "grok-4-1-fast-reasoning",
    "complex": "grok-4-0709",
    "simple": "grok-4-fast-non-reasoning",
}

# =============================================================================
# Weighted indicators for auto model selection
# =============================================================================

DEFINITIVE = 15
STRONG = 10
MODERATE = 5
WEAK = 2

CODE_WEIGHTS = [
    ("write code", DEFINITIVE), ("code review", DEFINITIVE), ("pull request", DEFINITIVE),
    ("function", STRONG), ("class", STRONG), ("method", STRONG), ("interface", STRONG),
    ("type", STRONG), ("enum", STRONG), ("struct", STRONG), ("typescript", STRONG),
    ("javascript", STRONG), ("python", STRONG), ("rust", STRONG), ("golang", STRONG),
    ("java", STRONG), ("c++", STRONG), ("react", STRONG), ("vue", STRONG),
    ("angular", STRONG), ("nextjs", STRONG), ("django", STRONG), ("express", STRONG),
    ("flask", STRONG), ("rails", STRONG), ("laravel", STRONG), ("spring", STRONG),
    ("node", STRONG),
    ("bug", MODERATE), ("error", MODERATE), ("exception", MODERATE), ("debug", MODERATE),
    ("refactor", MODERATE), ("optimize", MODERATE), ("performance", MODERATE),
    ("security", MODERATE), ("vulnerability", MODERATE), ("api", MODERATE),
    ("endpoint", MODERATE), ("rest", MODERATE), ("graphql", MODERATE),
    ("async", MODERATE), ("await", MODERATE), ("promise", MODERATE),
    ("code", WEAK), ("implement", WEAK), ("fix", WEAK), ("variable", WEAK),
    ("const", WEAK), ("let", WEAK), ("var", WEAK), ("pr", WEAK),
]

REASONING_WEIGHTS = [
    ("step by step", DEFINITIVE), ("step-by-step", DEFINITIVE), ("show your work", DEFINITIVE),
    ("explain your reasoning", DEFINITIVE), ("walk me through", DEFINITIVE),
    ("prove", STRONG), ("derive", STRONG), ("deduce", STRONG), ("infer", STRONG),
    ("theorem", STRONG), ("axiom", STRONG), ("proof", STRONG), ("hypothesis", STRONG),
    ("think through", MODERATE), ("reason through", MODERATE), ("why does", MODERATE),
    ("why is", MODERATE), ("how does", MODERATE), ("how can", MODERATE),
    ("what if", MODERATE), ("explain the logic", MODERATE), ("root cause", MODERATE),
    ("calculate", MODERATE), ("compute", MODERATE), ("solve", MODERATE),
    ("equation", MODERATE), ("formula", MODERATE),
    ("logic", WEAK), ("logical", WEAK), ("reasoning", WEAK), ("because", WEAK),
    ("therefore", WEAK), ("hence", WEAK), ("thus", WEAK),
]

COMPLEXITY_WEIGHTS = [
    ("system design", DEFINITIVE), ("architecture review", DEFINITIVE), ("design pattern", DEFINITIVE),
    ("tradeoffs", STRONG), ("trade-offs", STRONG), ("pros and cons", STRONG),
    ("scalability", STRONG), ("microservices", STRONG), ("distributed", STRONG),
    ("infrastructure", STRONG), ("best approach", STRONG), ("best practice", STRONG),
    ("analyze", MODERATE), ("analyse", MODERATE), ("evaluate", MODERATE),
    ("assess", MODERATE), ("critique", MODERATE), ("compare", MODERATE),
    ("contrast", MODERATE), ("strategy", MODERATE), ("roadmap", MODERATE),
    ("recommendation", MODERATE),
    ("architecture", WEAK), ("complex", WEAK), ("nuanced", WEAK), ("sophisticated", WEAK),
    ("comprehensive", WEAK), ("in-depth", WEAK), ("creative", WEAK), ("novel", WEAK),
    ("innovative", WEAK), ("brainstorm", WEAK), ("plan", WEAK),
]

SIMPLICITY_INDICATORS = [
    "simple", "brief", "briefly", "quick", "just tell me", "in one sentence",
    "tldr", "tl;dr", "summary", "short answer", "quick answer", "one word",
    "yes or no",
]

SIMPLICITY_PENALTY = 10
CODE_FENCE_WEIGHT = DEFINITIVE
# Adjusted score at or above which a "complex" query goes to the flagship model
FLAGSHIP_THRESHOLD = 30


@dataclass
class ComplexityScore:
    raw: int
    adjusted: int
    confidence: int
    category: str
    code_score: int = 0
    reasoning_score: int = 0
    complexity_score: int = 0
    simplicity_penalty: int = 0
    length_multiplier: float = 1.0
    context_multiplier: float = 1.0
    matched_indicators: list[str] = field(default_factory=list)


@dataclass
class AutoModelSelection:
    model: str
    reason: str
    matched_indicators: list[str]
    complexity_score: ComplexityScore


def estimate_tokens(*texts: Optional[str]) -> int:
    """Rough token estimate: one token per four characters."""
    chars = sum(len(t) for t in texts if t)
    return math.ceil(chars / 4)


def get_pricing(model: str) -> dict[str, float]:
    return MODEL_PRICING.get(model, DEFAULT_PRICING)


def get_model_timeout(
    model: str,
    request_timeout: Optional[int] = None,
    instance_timeout: Optional[int] = None,
) -> int:
    """
    Effective timeout in milliseconds for a resolved model id.

    An explicit per-request timeout always wins. Flagship grok-4 models
    (those without "fast" in the id) are slow and get at least
    SLOW_MODEL_TIMEOUT_MS.
    """
    if request_timeout:
        return request_timeout
    base = instance_timeout or DEFAULT_TIMEOUT_MS
    if model.startswith("grok-4") and "fast" not in model:
        return max(base, SLOW_MODEL_TIMEOUT_MS)
    return base


def _matches(text: str, pattern: str) -> bool:
    return re.search(rf"(?<![a-z0-9]){re.escape(pattern)}(?![a-z0-9])", text) is not None


def _weighted_matches(text: str, weights: list[tuple[str, int]], matched: list[str]) -> int:
    total = 0
    for pattern, weight in weights:
        if _matches(text, pattern):
            total += weight
            matched.append(pattern)
    return total


def _length_multiplier(query: str) -> float:
    n = len(query)
    if n < 50:
        return 0.8
    if n < 200:
        return 1.0
    if n < 1000:
        return 1.2
    return 1.5


def _context_multiplier(context: Optional[str]) -> float:
    if not context:
        return 1.0
    n = len(context)
    if n < 1000:
        return 1.1
    if n < 10_000:
        return 1.25
    return 1.5


def calculate_complexity_score(query: str, context: Optional[str] = None) -> ComplexityScore:
    """
    Score a query 0-100 by weighted keyword matches.

    Three categories are scored independently (code, reasoning, complex);
    simplicity phrases subtract from the total, and the query length and
    context size scale it.
    """
    text = query.lower()
    matched: list[str] = []

    code = _weighted_matches(text, CODE_WEIGHTS, matched)
    if "```" in query:
        code += CODE_FENCE_WEIGHT
        matched.append("```")
    reasoning = _weighted_matches(text, REASONING_WEIGHTS, matched)
    complexity = _weighted_matches(text, COMPLEXITY_WEIGHTS, matched)

    simple_hits = sum(1 for p in SIMPLICITY_INDICATORS if _matches(text, p))
    penalty = simple_hits * SIMPLICITY_PENALTY

    length_mult = _length_multiplier(query)
    context_mult = _context_multiplier(context)

    raw = max(0, code + reasoning + complexity - penalty)
    adjusted = min(100, round(raw * length_mult * context_mult))

    scores = {"code": code, "reasoning": reasoning, "complex": complexity}
    top_category = max(scores, key=lambda k: scores[k])
    top = scores[top_category]
    total = code + reasoning + complexity

    if top == 0 or adjusted < 10:
        category = "simple"
        if simple_hits:
            confidence = 90
        elif total:
            # weak signals below the threshold
            confidence = 100 - adjusted * 5
        else:
            confidence = 50
    else:
        category = top_category
        confidence = round(top / total * 100)

    return ComplexityScore(
        raw=raw,
        adjusted=adjusted,
        confidence=confidence,
        category=category,
        code_score=code,
        reasoning_score=reasoning,
        complexity_score=complexity,
        simplicity_penalty=penalty,
        length_multiplier=length_mult,
        context_multiplier=context_mult,
        matched_indicators=matched,
    )


def select_model_from_score(score: ComplexityScore) -> str:
    if score.category == "complex" and score.adjusted < FLAGSHIP_THRESHOLD:
        return CATEGORY_MODELS["reasoning"]
    return CATEGORY_MODELS[score.category]


def select_auto_model(query: str, context: Optional[str] = None) -> AutoModelSelection:
    """Pick a model id for the ``auto`` alias from the query text."""
    score = calculate_complexity_score(query, context)
    return AutoModelSelection(
        model=select_model_from_score(score),
        reason=score.category,
        matched_indicators=score.matched_indicators,
        complexity_score=score,
    )


def resolve_model(
    model_input: str,
    query: Optional[str] = None,
    context: Optional[str] = None,
) -> str:
    """
    Resolve an alias or model id to the id sent upstream.

    ``auto`` with a query runs the selection heuristic; other aliases map
    through MODEL_ALIASES, retired ids through MODEL_FALLBACKS, and anything
    else is passed through unchanged.
    """
    if model_input == "auto" and query:
        return select_auto_model(query, context).model
    if model_input in MODEL_ALIASES:
        return MODEL_ALIASES[model_input]
    if model_input in MODEL_FALLBACKS:
        return MODEL_FALLBACKS[model_input]
    return model_input
