"""Query-side helpers: search emphasis, coordination and result ranking."""

from .coordinator import EMPHASIS_KINDS, SearchCoordinator, SearchEmphasis
from .ranker import merge_results, rank_results

__all__ = [
    "EMPHASIS_KINDS",
    "SearchCoordinator",
    "SearchEmphasis",
    "merge_results",
    "rank_results",
]
