"""
BM25 scorer with corpus-level IDF.

BM25 (Best Match 25) is a probabilistic ranking function used for information retrieval.

Formula:
    score(term, doc) = idf(term) × (tf × (k1 + 1)) / (tf + k1 × (1 - b + b × dl/avgdl))
    idf(term) = ln((N - df + 0.5) / (df + 0.5))

Where:
    tf = term frequency in document
    df = number of documents containing term
    N = corpus size
    k1 = term frequency saturation parameter (default: 1.5)
    b = length normalization parameter (default: 0.75)
    dl = document length (number of tokens)
    avgdl = average document length of the indexed corpus

Non-positive IDF (tiny corpora, or a term present in half the corpus or more)
clamps that term's contribution to zero instead of going negative.

Documents sharing no term with the query are left out of the result map.
Downstream fusion treats "absent" differently from "present with score 0".
"""

import math
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from .index_builder import TermIndex


@dataclass
class TermContribution:
    """Per-term BM25 breakdown for one document"""
    tf: int
    df: int
    idf: float
    normalized_tf: float
    score: float


@dataclass
class TermScore:
    """BM25 score of one document plus its per-term breakdown"""
    score: float
    breakdown: Dict[str, TermContribution] = field(default_factory=dict)


class BM25Scorer:
    """
    BM25 scoring against a TermIndex snapshot.
    """

    def __init__(self, k1: float = 1.5, b: float = 0.75, title_boost: float = 1.0):
        """
        Initialize BM25 scorer.

        Args:
            k1: Term frequency saturation parameter
                Higher = more weight to term frequency
                Range: 1.2 - 2.0
                Default: 1.5

            b: Length normalization parameter
                Higher = more penalty for long documents
                Range: 0.0 - 1.0
                Default: 0.75 (standard)

            title_boost: Multiplier applied when any query term occurs in the
                item title (1.0 = disabled)
        """
        self.k1 = k1
        self.b = b
        self.title_boost = title_boost

    @staticmethod
    def idf(index: TermIndex, term: str) -> float:
        """Raw (unclamped) inverse document frequency"""
        n = index.document_count
        df = index.document_frequency(term)
        return math.log((n - df + 0.5) / (df + 0.5))

    def score(
        self,
        index: TermIndex,
        query_terms: List[str],
        term_weights: Optional[Mapping[str, float]] = None,
        titles: Optional[Mapping[str, str]] = None,
    ) -> Dict[str, TermScore]:
        """
        Compute BM25 scores for every document sharing a term with the query.

        Args:
            index: Term index snapshot
            query_terms: Normalized query terms (duplicates are scored once)
            term_weights: Optional multiplier per term (fuzzy expansions < 1.0)
            titles: Optional item_id -> title map, used for title boosting

        Returns:
            {item_id: TermScore}, only for documents with >= 1 overlapping term.
            All scores are >= 0.

        Example:
            >>> index = build_index(items)
            >>> BM25Scorer().score(index, ["pets"])
            {'doc1': TermScore(score=..., breakdown={'pets': ...}), ...}
        """
        results: Dict[str, TermScore] = {}
        if not query_terms or index.document_count == 0:
            return results

        avgdl = index.avg_doc_length or 1.0
        unique_terms = list(dict.fromkeys(query_terms))

        for term in unique_terms:
            postings = index.postings.get(term)
            if not postings:
                continue

            df = len(postings)
            idf = self.idf(index, term)
            weight = term_weights.get(term, 1.0) if term_weights else 1.0

            for item_id, tf in postings.items():
                dl = index.doc_lengths.get(item_id, 0)

                numerator = tf * (self.k1 + 1)
                denominator = tf + self.k1 * (1 - self.b + self.b * (dl / avgdl))
                normalized_tf = numerator / denominator

                # Clamp: a non-positive idf would push the document below unrelated ones
                term_score = max(0.0, idf) * normalized_tf * weight

                entry = results.setdefault(item_id, TermScore(score=0.0))
                entry.score += term_score
                entry.breakdown[term] = TermContribution(
                    tf=tf,
                    df=df,
                    idf=idf,
                    normalized_tf=normalized_tf,
                    score=term_score,
                )

        if titles and self.title_boost != 1.0:
            for item_id, entry in results.items():
                title = (titles.get(item_id) or "").lower()
                if title and any(term in title for term in entry.breakdown):
                    entry.score *= self.title_boost

        return results

    def rank(
        self,
        index: TermIndex,
        query_terms: List[str],
        limit: Optional[int] = None,
        **kwargs,
    ) -> List[tuple]:
        """Scores as a ranked list of (item_id, score), best first"""
        scores = self.score(index, query_terms, **kwargs)
        ranked = sorted(
            ((item_id, entry.score) for item_id, entry in scores.items()),
            key=lambda pair: pair[1],
            reverse=True,
        )
        return ranked[:limit] if limit is not None else ranked
