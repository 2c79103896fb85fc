from collections.abc import Callable

from recengine.core.config import settings
from recengine.models.recommendation import AvailableContext, Strategy, WeightVector

# Which identifiers each strategy needs. Trending needs none and is always applicable.
APPLICABILITY: dict[Strategy, Callable[[AvailableContext], bool]] = {
    Strategy.COLLABORATIVE: lambda ctx: ctx.has_user,
    Strategy.BEHAVIORAL: lambda ctx: ctx.has_user,
    Strategy.DEMOGRAPHIC: lambda ctx: ctx.has_user,
    Strategy.CONTENT: lambda ctx: ctx.has_item,
    Strategy.BUSINESS_RULE: lambda ctx: ctx.has_item,
    Strategy.SESSION: lambda ctx: ctx.has_session,
    Strategy.TRENDING: lambda ctx: True,
}


def base_weights() -> WeightVector:
    """Un-normalized strategy weights from settings."""
    return {
        Strategy.COLLABORATIVE: settings.WEIGHT_COLLABORATIVE,
        Strategy.CONTENT: settings.WEIGHT_CONTENT,
        Strategy.BEHAVIORAL: settings.WEIGHT_BEHAVIORAL,
        Strategy.TRENDING: settings.WEIGHT_TRENDING,
        Strategy.SESSION: settings.WEIGHT_SESSION,
        Strategy.DEMOGRAPHIC: settings.WEIGHT_DEMOGRAPHIC,
        Strategy.BUSINESS_RULE: settings.WEIGHT_BUSINESS_RULE,
    }


def compute_weights(available: AvailableContext, base: WeightVector | None = None) -> WeightVector:
    """
    Normalized weights for the strategies that apply to ``available``.

    Only applicable strategies with a positive base weight are returned, and their
    weights sum to 1. Trending is always part of the result.
    """
    base = base if base is not None else base_weights()
    applicable = {
        strategy: weight
        for strategy, weight in base.items()
        if weight > 0 and APPLICABILITY[strategy](available)
    }
    total = sum(applicable.values())
    if Strategy.TRENDING not in applicable or total <= 0:
        # trending is the universal fallback signal
        floor = min(applicable.values(), default=1.0)
        applicable[Strategy.TRENDING] = floor
        total = sum(applicable.values())
    return {strategy: weight / total for strategy, weight in applicable.items()}
