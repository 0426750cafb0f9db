"""
BM25 index builder - inverted index and per-document statistics.

The index is an immutable snapshot: build_index() always produces a fresh
TermIndex from the full corpus, and the owner swaps its reference in one
assignment. Readers never see a partially populated structure.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional

from ..models import Item, utcnow
from .tokenizer import tokenize

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TermIndex:
    """
    Immutable inverted index over one corpus snapshot.

    postings: term -> {item_id: term frequency}
    doc_lengths: item_id -> number of tokens
    """
    postings: Mapping[str, Mapping[str, int]]
    doc_lengths: Mapping[str, int]
    avg_doc_length: float
    stemmer_language: Optional[str] = None
    built_at: datetime = field(default_factory=utcnow)

    @property
    def document_count(self) -> int:
        return len(self.doc_lengths)

    @property
    def vocabulary_size(self) -> int:
        return len(self.postings)

    def document_frequency(self, term: str) -> int:
        return len(self.postings.get(term, ()))

    def term_frequency(self, term: str, item_id: str) -> int:
        return self.postings.get(term, {}).get(item_id, 0)

    def __contains__(self, item_id: str) -> bool:
        return item_id in self.doc_lengths


def build_index(items: Iterable[Item], stemmer_language: Optional[str] = None) -> TermIndex:
    """
    Build the inverted index from the full current corpus.

    Idempotent: the same corpus always produces an equal index. Each item's
    searchable text is its content plus title.

    Args:
        items: Complete corpus snapshot
        stemmer_language: Snowball language or None (must match query tokenization)

    Returns:
        New TermIndex

    Example:
        >>> index = build_index([Item(id="a", content="pod deployment pod")])
        >>> dict(index.postings["pod"])
        {'a': 2}
    """
    postings: Dict[str, Dict[str, int]] = {}
    doc_lengths: Dict[str, int] = {}
    total_length = 0

    for item in items:
        tokens = tokenize(item.text, stemmer_language)
        doc_lengths[item.id] = len(tokens)
        total_length += len(tokens)

        for term, tf in Counter(tokens).items():
            postings.setdefault(term, {})[item.id] = tf

    avg_doc_length = total_length / len(doc_lengths) if doc_lengths else 0.0

    index = TermIndex(
        postings=MappingProxyType({t: MappingProxyType(p) for t, p in postings.items()}),
        doc_lengths=MappingProxyType(doc_lengths),
        avg_doc_length=avg_doc_length,
        stemmer_language=stemmer_language,
    )

    logger.debug(
        f"Built BM25 index: {index.document_count} docs, {index.vocabulary_size} unique terms, "
        f"avg length {avg_doc_length:.1f}"
    )
    return index
