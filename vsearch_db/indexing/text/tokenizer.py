import re
from collections import Counter
from typing import Iterable, List, Optional

_TOKEN_RE = re.compile(r"[^\W_]+", re.UNICODE)


def tokenize(text: str, stopwords: Optional[Iterable[str]] = None) -> List[str]:
    """
    Lower-case ``text`` and split it into word tokens.

    Tokens are runs of letters and digits; punctuation, whitespace and ``_``
    separate them. Stopwords are dropped.
    """
    if not text:
        return []
    stop = stopwords if isinstance(stopwords, (set, frozenset)) else frozenset(stopwords or ())
    return [t for t in _TOKEN_RE.findall(text.lower()) if t not in stop]


def term_frequencies(text: str, stopwords: Optional[Iterable[str]] = None) -> Counter:
    return Counter(tokenize(text, stopwords))
