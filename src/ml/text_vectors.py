"""Sparse TF-IDF vectors over interned tokens, plus edit similarity.

Vectors are plain dicts of token id -> weight. The IDF table and token ids come
from a fitted TfidfVectorizer; the resulting Vocabulary is persisted with each
trained model so that ids stay stable across processes.
"""

import math
import re
from collections import Counter
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
from rapidfuzz.distance import Levenshtein
from sklearn.feature_extraction.text import TfidfVectorizer

from src.constants import UNKNOWN_TOKEN_IDF_BASE

SparseVector = Dict[int, float]

NGRAM_PREFIX = "ng_"
UNKNOWN_IDF = math.log(UNKNOWN_TOKEN_IDF_BASE)

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def word_tokens(text: str, stop_words: Iterable[str]) -> List[str]:
    """Lower-case words of length >= 2 that are not stop words."""
    stop = stop_words if isinstance(stop_words, (set, frozenset)) else set(stop_words)
    return [
        token for token in _NON_ALNUM.sub(" ", text.lower()).split()
        if len(token) >= 2 and token not in stop
    ]


def char_ngrams(text: str, n: int = 3) -> List[str]:
    """Tagged character n-grams of the alphanumeric-only lower-cased text."""
    compact = _NON_ALNUM.sub("", text.lower())
    return [NGRAM_PREFIX + compact[i:i + n] for i in range(len(compact) - n + 1)]


class Vocabulary:
    """Token string <-> integer id interning table"""

    def __init__(self, tokens: Optional[Sequence[str]] = None):
        self.tokens: List[str] = []
        self._ids: Dict[str, int] = {}
        for token in tokens or []:
            self.add(token)

    def add(self, token: str) -> int:
        token_id = self._ids.get(token)
        if token_id is None:
            token_id = len(self.tokens)
            self._ids[token] = token_id
            self.tokens.append(token)
        return token_id

    def get(self, token: str) -> Optional[int]:
        return self._ids.get(token)

    def __len__(self) -> int:
        return len(self.tokens)


def term_frequencies(tokens: Sequence[str]) -> Dict[str, float]:
    """count / document length"""
    total = len(tokens)
    if total == 0:
        return {}
    return {token: count / total for token, count in Counter(tokens).items()}


def fit_idf(texts: Sequence[str], analyzer: Callable[[str], List[str]]) -> Tuple[Vocabulary, Dict[int, float]]:
    """
    Fit a smoothed IDF table, ln((N + 1) / (df + 1)) + 1, over raw texts.

    Args:
        texts: Training documents
        analyzer: Tokenizer applied to each document

    Returns:
        (Vocabulary in vectorizer column order, token id -> IDF); both empty
        when no document yields a token
    """
    vectorizer = TfidfVectorizer(analyzer=analyzer, smooth_idf=True, norm=None)
    try:
        vectorizer.fit(texts)
    except ValueError:
        # empty vocabulary
        return Vocabulary(), {}
    vocabulary = Vocabulary([str(token) for token in vectorizer.get_feature_names_out()])
    idf = {token_id: float(value) for token_id, value in enumerate(vectorizer.idf_)}
    return vocabulary, idf


def tfidf_vector(tokens: Sequence[str], vocabulary: Vocabulary, idf: Dict[int, float],
                 grow: bool = False) -> SparseVector:
    """
    Weight a token list against a trained IDF table.

    Tokens missing from the vocabulary get a high IDF. When grow is False
    (query time) they are kept under negative ids so they still count towards
    the query norm without colliding with trained tokens.

    Args:
        tokens: Document tokens
        vocabulary: Interning table
        idf: Token id -> IDF
        grow: Add unseen tokens to the vocabulary (training time)

    Returns:
        Sparse TF-IDF vector
    """
    vector: SparseVector = {}
    unknown: Dict[str, int] = {}
    for token, tf in term_frequencies(tokens).items():
        token_id = vocabulary.add(token) if grow else vocabulary.get(token)
        if token_id is None:
            token_id = unknown.setdefault(token, -(len(unknown) + 1))
            vector[token_id] = tf * UNKNOWN_IDF
        else:
            vector[token_id] = tf * idf.get(token_id, UNKNOWN_IDF)
    return vector


def cosine_similarity(a: SparseVector, b: SparseVector) -> float:
    """Cosine of two sparse vectors; 0 if either is empty."""
    if not a or not b:
        return 0.0
    if len(a) > len(b):
        a, b = b, a
    dot = sum(weight * b.get(token_id, 0.0) for token_id, weight in a.items())
    norm = np.linalg.norm(list(a.values())) * np.linalg.norm(list(b.values()))
    return 0.0 if norm == 0 else float(dot / norm)


def centroid(vectors: Sequence[SparseVector]) -> SparseVector:
    """Arithmetic mean of sparse vectors (missing ids count as 0)."""
    if not vectors:
        return {}
    totals: Dict[int, float] = {}
    for vector in vectors:
        for token_id, weight in vector.items():
            totals[token_id] = totals.get(token_id, 0.0) + weight
    count = len(vectors)
    return {token_id: total / count for token_id, total in totals.items()}


def edit_similarity(a: str, b: str) -> float:
    """1 - levenshtein / max length, case-insensitive; 1.0 for two empty strings."""
    return Levenshtein.normalized_similarity(a.lower(), b.lower())
