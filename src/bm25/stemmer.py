"""
Snowball Stemmer (via NLTK).

Uses the Snowball stemming algorithm (improved Porter2 stemmer):
https://snowballstem.org/

The corpus is multilingual, so one stemmer is kept per language and created
lazily on first use.

Examples (english):
- "architectures" → "architectur"
- "strategies" → "strategi"
- "running" → "run"
"""

from functools import lru_cache

from nltk.stem.snowball import SnowballStemmer


@lru_cache(maxsize=None)
def _get_stemmer(language: str) -> SnowballStemmer:
    # Raises ValueError for languages Snowball doesn't support
    return SnowballStemmer(language)


def stem(word: str, language: str = "english") -> str:
    """
    Stem a single word using Snowball algorithm.

    Args:
        word: Lowercase word to stem
        language: Snowball language name

    Returns:
        Stemmed word

    Examples:
        >>> stem("architectures")
        'architectur'
        >>> stem("searching")
        'search'
    """
    return _get_stemmer(language).stem(word)
