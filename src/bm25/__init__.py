"""
BM25 (Best Match 25) lexical retrieval for hybrid search.

Components:
- tokenizer: Text normalization for term extraction (shared with MMR / graph seeds)
- stemmer: Optional Snowball stemming
- index_builder: Immutable inverted index + per-document statistics
- scorer: BM25 scoring with clamped corpus-level IDF
- fuzzy: Levenshtein query-term expansion feeding the same scorer
"""

from .tokenizer import tokenize, token_set
from .stemmer import stem
from .index_builder import TermIndex, build_index
from .scorer import BM25Scorer, TermScore, TermContribution
from .fuzzy import FuzzyExpander, levenshtein_distance

__all__ = [
    "tokenize",
    "token_set",
    "stem",
    "TermIndex",
    "build_index",
    "BM25Scorer",
    "TermScore",
    "TermContribution",
    "FuzzyExpander",
    "levenshtein_distance",
]
