from recengine.core.cache import SharedCache
from recengine.models.recommendation import Strategy
from recengine.services.embedding import EmbeddingService
from recengine.services.recommendation.strategies.base import RecommendationStrategy
from recengine.services.recommendation.strategies.behavioral import BehavioralStrategy
from recengine.services.recommendation.strategies.business_rules import BusinessRulesStrategy
from recengine.services.recommendation.strategies.collaborative import CollaborativeStrategy
from recengine.services.recommendation.strategies.content import ContentSimilarityStrategy
from recengine.services.recommendation.strategies.demographic import DemographicStrategy
from recengine.services.recommendation.strategies.session import SessionStrategy
from recengine.services.recommendation.strategies.trending import TrendingStrategy
from recengine.services.store.resilient import ResilientStoreClient


def build_strategies(
    store: ResilientStoreClient, cache: SharedCache, embedding: EmbeddingService, **kwargs
) -> dict[Strategy, RecommendationStrategy]:
    """One instance of every strategy, keyed by its ``Strategy`` name."""
    strategies: list[RecommendationStrategy] = [
        CollaborativeStrategy(store, **kwargs),
        ContentSimilarityStrategy(store, **kwargs),
        BehavioralStrategy(store, **kwargs),
        TrendingStrategy(store, **kwargs),
        SessionStrategy(store, cache=cache, embedding=embedding, **kwargs),
        DemographicStrategy(store, **kwargs),
        BusinessRulesStrategy(store, **kwargs),
    ]
    return {s.name: s for s in strategies}


__all__ = [
    "RecommendationStrategy",
    "CollaborativeStrategy",
    "ContentSimilarityStrategy",
    "BehavioralStrategy",
    "TrendingStrategy",
    "SessionStrategy",
    "DemographicStrategy",
    "BusinessRulesStrategy",
    "build_strategies",
]
