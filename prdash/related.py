"""Related pull request hints.

Scoring sits behind ``RelatednessScorer`` so the weights can be tuned or the
heuristic swapped without touching aggregation.
"""

from dataclasses import dataclass
from typing import Protocol

from prdash.models import RawPullRequest


class RelatednessScorer(Protocol):
    def score(self, pr: RawPullRequest, other: RawPullRequest) -> int: ...


def _significant_words(title: str, min_length: int) -> list[str]:
    return [word for word in title.lower().split() if len(word) >= min_length]


@dataclass(frozen=True)
class WeightedRelatednessScorer:
    """Points for shared repository/author plus a bonus for overlapping title words."""

    same_repo_and_author: int = 50
    same_repo: int = 15
    same_author: int = 10
    shared_words: int = 20
    min_shared_words: int = 3
    min_word_length: int = 4

    def score(self, pr: RawPullRequest, other: RawPullRequest) -> int:
        same_repo = pr.repository.name == other.repository.name
        same_author = pr.created_by.unique_name == other.created_by.unique_name

        points = 0
        if same_repo and same_author:
            points += self.same_repo_and_author
        elif same_repo:
            points += self.same_repo
        elif same_author:
            points += self.same_author

        words = _significant_words(pr.title, self.min_word_length)
        other_words = set(_significant_words(other.title, self.min_word_length))
        common = [word for word in words if word in other_words]
        if len(common) >= self.min_shared_words and len(words) >= self.min_shared_words:
            points += self.shared_words

        return points


def related_pull_requests(
    pr: RawPullRequest,
    candidates: list,
    scorer: RelatednessScorer | None = None,
    threshold: int = 30,
    limit: int = 1,
) -> list:
    """Return up to ``limit`` candidates scoring at least ``threshold``, best first."""
    scorer = scorer or WeightedRelatednessScorer()
    scored = []
    for other in candidates:
        if other.key == pr.key:
            continue
        points = scorer.score(pr, other)
        if points >= threshold:
            scored.append((points, other))

    scored.sort(key=lambda item: item[0], reverse=True)
    return [other for _, other in scored[:limit]]
