from collections.abc import Iterable, Mapping
from typing import Any

from recengine.models.recommendation import Candidate, MergedCandidate, Strategy, WeightVector

_STRATEGY_ORDER = {strategy: index for index, strategy in enumerate(Strategy)}


class RecommendationScoring:
    """
    Handles score normalization, decay, merging and the final ordering.
    """

    @staticmethod
    def normalize_by_max(scores: Mapping[Any, float]) -> dict[Any, float]:
        """Scale scores so the largest becomes 1.0. Non-positive maxima yield an empty map."""
        if not scores:
            return {}
        top = max(scores.values())
        if top <= 0:
            return {}
        return {key: value / top for key, value in scores.items()}

    @staticmethod
    def decay(age_hours: float, half_life_hours: float) -> float:
        """Exponential time decay: 1.0 now, 0.5 after one half-life."""
        if half_life_hours <= 0:
            return 1.0
        return 0.5 ** (max(0.0, age_hours) / half_life_hours)

    @staticmethod
    def jaccard(a: Iterable[Any], b: Iterable[Any]) -> float:
        set_a, set_b = set(a), set(b)
        if not set_a or not set_b:
            return 0.0
        return len(set_a & set_b) / len(set_a | set_b)

    @staticmethod
    def candidate_key(candidate: Candidate) -> tuple[float, str]:
        return (-candidate.raw_score, candidate.item_id)

    @staticmethod
    def rank_key(item: MergedCandidate) -> tuple[float, int, str]:
        """Score desc, then number of contributing sources desc, then item id asc."""
        return (-item.final_score, -len(item.sources), item.item_id)

    @staticmethod
    def merge(
        batches: Mapping[Strategy, list[Candidate]],
        weights: WeightVector,
        diversity_bonus: float = 0.05,
    ) -> list[MergedCandidate]:
        """
        Merge per-strategy candidates into one ranked, deduplicated list.

        final_score = sum(weight * raw_score over contributing strategies)
                      + diversity_bonus * (number of contributing strategies - 1)

        If a strategy proposes the same item twice, its best raw score is used.
        Strategies are folded in a fixed order so the floating point sum is the
        same on every run.
        """
        best: dict[str, dict[Strategy, Candidate]] = {}
        for strategy in sorted(batches, key=lambda s: _STRATEGY_ORDER[s]):
            if weights.get(strategy, 0.0) <= 0:
                continue
            for candidate in batches[strategy]:
                per_item = best.setdefault(candidate.item_id, {})
                current = per_item.get(strategy)
                if current is None or candidate.raw_score > current.raw_score:
                    per_item[strategy] = candidate

        merged: list[MergedCandidate] = []
        for item_id, contributions in best.items():
            ordered = sorted(contributions, key=lambda s: _STRATEGY_ORDER[s])
            score = 0.0
            for strategy in ordered:
                score += weights[strategy] * contributions[strategy].raw_score
            score += diversity_bonus * (len(ordered) - 1)

            item = MergedCandidate(item_id=item_id, sources=set(ordered), final_score=score)
            for strategy in ordered:
                c = contributions[strategy]
                item.category = item.category or c.category
                item.price = item.price if item.price is not None else c.price
                item.tags = item.tags or list(c.tags)
            merged.append(item)

        merged.sort(key=RecommendationScoring.rank_key)
        return merged
