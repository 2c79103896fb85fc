import pytest

from recengine.models.recommendation import AvailableContext, Strategy
from recengine.services.recommendation.weights import base_weights, compute_weights


def test_no_identifiers_collapses_to_trending():
    assert compute_weights(AvailableContext()) == {Strategy.TRENDING: 1.0}


def test_user_enables_user_strategies():
    weights = compute_weights(AvailableContext(has_user=True))
    assert set(weights) == {
        Strategy.COLLABORATIVE,
        Strategy.BEHAVIORAL,
        Strategy.DEMOGRAPHIC,
        Strategy.TRENDING,
    }
    assert sum(weights.values()) == pytest.approx(1.0)
    assert weights[Strategy.COLLABORATIVE] > weights[Strategy.DEMOGRAPHIC]


def test_item_and_session_enable_their_strategies():
    weights = compute_weights(AvailableContext(has_item=True, has_session=True))
    assert set(weights) == {Strategy.CONTENT, Strategy.BUSINESS_RULE, Strategy.SESSION, Strategy.TRENDING}


def test_full_context_uses_base_proportions():
    weights = compute_weights(AvailableContext(has_user=True, has_item=True, has_session=True))
    base = base_weights()
    total = sum(base.values())
    assert set(weights) == set(Strategy)
    for strategy, weight in weights.items():
        assert weight == pytest.approx(base[strategy] / total)


def test_trending_stays_positive_when_configured_to_zero():
    base = {strategy: 0.2 for strategy in Strategy}
    base[Strategy.TRENDING] = 0.0
    weights = compute_weights(AvailableContext(has_user=True), base)
    assert weights[Strategy.TRENDING] > 0
    assert sum(weights.values()) == pytest.approx(1.0)


def test_zero_weight_strategies_are_dropped():
    base = base_weights()
    base[Strategy.DEMOGRAPHIC] = 0.0
    weights = compute_weights(AvailableContext(has_user=True), base)
    assert Strategy.DEMOGRAPHIC not in weights
