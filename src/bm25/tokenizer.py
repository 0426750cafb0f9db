"""
Tokenizer for BM25 text processing.

Tokenization pipeline:
1. Lowercase conversion
2. Replace punctuation with whitespace
3. Split on whitespace
4. Drop short tokens (<= 2 chars)
5. Filter stopwords (English + Portuguese, the corpus languages)
6. Optionally apply Snowball stemming ("architectures" → "architectur")

The same normalization feeds the term index, the query, the graph pass seeds
and the Jaccard similarity used by MMR, so all of them agree on what a "term" is.
"""

import re
from typing import FrozenSet, List, Optional

from .stemmer import stem

MIN_TOKEN_LENGTH = 3

# Fixed multilingual stopword list. Tokens of <= 2 chars are dropped anyway,
# so only longer function words need listing.
STOPWORDS = frozenset([
    # English
    'the', 'and', 'but', 'for', 'from', 'with', 'about', 'into', 'through',
    'during', 'before', 'after', 'above', 'below', 'between', 'among',
    'under', 'within', 'without', 'toward', 'are', 'was', 'were', 'been',
    'this', 'that', 'these', 'those', 'their', 'there', 'then', 'they',
    'will', 'not', 'such',
    # Portuguese
    'uma', 'dos', 'das', 'para', 'com', 'por', 'sem', 'sobre', 'entre',
    'durante', 'depois', 'antes', 'dentro', 'fora', 'que', 'não', 'mais',
    'como', 'mas', 'nos', 'nas', 'pelo', 'pela',
])

# \w keeps accented letters; everything else (punctuation, symbols, "_") becomes space
_PUNCTUATION = re.compile(r"[^\w\s]|_")


def tokenize(text: str, stemmer_language: Optional[str] = None) -> List[str]:
    """
    Tokenize text for BM25 scoring with stopword removal.

    Args:
        text: Input text to tokenize
        stemmer_language: Snowball language ("english", "portuguese", ...)
            or None to keep tokens unstemmed

    Returns:
        List of normalized tokens (duplicates preserved, in text order)

    Examples:
        >>> tokenize("Cats are great pets!")
        ['cats', 'great', 'pets']

        >>> tokenize("the stock market rose today")
        ['stock', 'market', 'rose', 'today']

        >>> tokenize("   ")
        []
    """
    if not text:
        return []

    text = _PUNCTUATION.sub(" ", text.lower())

    tokens = [
        t for t in text.split()
        if len(t) >= MIN_TOKEN_LENGTH and t not in STOPWORDS
    ]

    if stemmer_language:
        tokens = [stem(t, stemmer_language) for t in tokens]

    return tokens


def token_set(text: str, stemmer_language: Optional[str] = None) -> FrozenSet[str]:
    """Unique normalized tokens of a text (bag-of-words for Jaccard overlap)"""
    return frozenset(tokenize(text, stemmer_language))
