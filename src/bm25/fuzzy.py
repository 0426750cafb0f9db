"""
Fuzzy query-term expansion for BM25.

Query terms missing from the index vocabulary (typos, inflections) are mapped
to close vocabulary terms by Levenshtein distance. The expansions are then
scored by the regular BM25 scorer, weighted by their string similarity, so
there is a single lexical scoring path instead of a separate fuzzy ranker.

similarity(a, b) = 1 - distance(a, b) / max(len(a), len(b))
"""

import logging
from typing import Dict, Iterable, List, Tuple

logger = logging.getLogger(__name__)


def levenshtein_distance(a: str, b: str) -> int:
    """
    Edit distance (insertions, deletions, substitutions) between two strings.

    Examples:
        >>> levenshtein_distance("kitten", "sitting")
        3
        >>> levenshtein_distance("pets", "pets")
        0
    """
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    # Two-row dynamic programming
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(
                current[j - 1] + 1,
                previous[j] + 1,
                previous[j - 1] + cost,
            ))
        previous = current
    return previous[-1]


def string_similarity(a: str, b: str) -> float:
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / longest


class FuzzyExpander:
    """Expands unknown query terms to similar vocabulary terms"""

    def __init__(self, max_distance: int = 2, threshold: float = 0.6, prefix_length: int = 0):
        """
        Args:
            max_distance: Maximum Levenshtein distance for a match
            threshold: Minimum similarity (0-1) for a match
            prefix_length: Vocabulary terms shorter than this are never matched
        """
        self.max_distance = max_distance
        self.threshold = threshold
        self.prefix_length = prefix_length

    def matches(self, term: str, vocabulary: Iterable[str]) -> List[Tuple[str, float]]:
        """Vocabulary terms close to `term`, best similarity first"""
        found = []
        for candidate in vocabulary:
            if len(candidate) < self.prefix_length:
                continue
            # Cheap length filter before the quadratic distance computation
            if abs(len(candidate) - len(term)) > self.max_distance:
                continue
            distance = levenshtein_distance(term, candidate)
            if distance > self.max_distance:
                continue
            similarity = 1.0 - distance / max(len(term), len(candidate))
            if similarity >= self.threshold:
                found.append((candidate, similarity))
        found.sort(key=lambda pair: (-pair[1], pair[0]))
        return found

    def expand(self, query_terms: List[str], vocabulary: Iterable[str]) -> Tuple[List[str], Dict[str, float]]:
        """
        Expand query terms against the index vocabulary.

        Terms already in the vocabulary are kept with weight 1.0; the others are
        replaced by their fuzzy matches weighted by similarity. When several
        query terms expand to the same vocabulary term, the best weight wins.

        Returns:
            (expanded terms, {term: weight})
        """
        vocab = set(vocabulary)
        weights: Dict[str, float] = {}

        for term in query_terms:
            if term in vocab:
                weights[term] = 1.0
                continue
            for candidate, similarity in self.matches(term, vocab):
                if similarity > weights.get(candidate, 0.0):
                    weights[candidate] = similarity

        expanded = list(weights)
        if len(expanded) != len(set(query_terms)):
            logger.debug(f"Fuzzy expansion: {query_terms} -> {weights}")
        return expanded, weights
