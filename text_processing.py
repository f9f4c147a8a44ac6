"""
text_processing.py
------------------

Text featurization for short Vietnamese transaction notes and lifestyle
descriptions.

Two tokenizers live here:

* ``tokenize`` is used by the transaction classifier.  It strips money
  amounts, plain numbers and date fragments ("450k", "tháng 7", "12/05")
  before splitting, then drops a small list of Vietnamese stopwords, so
  that "Tiền điện tháng 7 450k" and "tiền điện" land on the same terms.
* ``tokenize_words`` is used by the lifestyle network.  It only lowercases
  and splits on runs of non-alphanumeric characters.

Both feed a ``Vocabulary`` which reserves index 0 for padding and index 1
for unknown terms.
"""

from __future__ import annotations

import re
from typing import Callable, Dict, Iterable, List, Optional, Sequence

import numpy as np
from sklearn.feature_extraction.text import CountVectorizer
from sklearn.metrics.pairwise import cosine_similarity as pairwise_cosine
from sklearn.preprocessing import normalize

PAD_TOKEN = "<pad>"
UNK_TOKEN = "<unk>"
PAD_INDEX = 0
UNK_INDEX = 1

VIETNAMESE_STOPWORDS = frozenset([
    "và", "của", "có", "cho", "với", "từ", "được", "đã", "sẽ", "đang",
    "các", "những", "một", "cái", "chiếc", "cũng", "như", "để", "khi",
    "này", "đó", "thì", "là", "ở", "tại", "trên", "dưới", "trong", "ngoài",
])

# "500k", "1 triệu 2", "4tr8", "750.000 đồng"
MONEY_PATTERN = re.compile(
    r"\d+(?:[.,]\d{3})*\s*(?:k|nghìn|ngàn|ngan|ng|tr|triệu|trieu|m|tỷ|ty|b|đồng|dong|đ|d|vnd|vnđ)"
    r"(?:\s*\d{1,3})?(?![^\W_])",
    re.IGNORECASE,
)

NOISE_PATTERNS = [
    MONEY_PATTERN,
    re.compile(r"tháng\s*\d+", re.IGNORECASE),
    re.compile(r"ngày\s*\d+", re.IGNORECASE),
    re.compile(r"\d+/\d+(?:/\d+)?"),
    re.compile(r"\b\d+[.,]?\d*\b"),
    re.compile(r"\b(?:tháng|ngày|năm)\b", re.IGNORECASE),
]

_NON_WORD = re.compile(r"[^\w\s]|_")
_SPACES = re.compile(r"\s+")
_WORD_RUN = re.compile(r"[^\W_]+")


def clean_transaction_text(text: str) -> str:
    """Remove amounts, numbers and date fragments from a note."""
    cleaned = text or ""
    for pattern in NOISE_PATTERNS:
        cleaned = pattern.sub(" ", cleaned)
    return _SPACES.sub(" ", cleaned).strip()


def normalize_vietnamese_text(text: str) -> str:
    lowered = (text or "").lower()
    return _SPACES.sub(" ", _NON_WORD.sub(" ", lowered)).strip()


def tokenize(text: str) -> List[str]:
    """Classifier tokenizer: clean, normalize, split and drop stopwords."""
    normalized = normalize_vietnamese_text(clean_transaction_text(text))
    return [tok for tok in normalized.split(" ") if tok and tok not in VIETNAMESE_STOPWORDS]


def tokenize_words(text: str) -> List[str]:
    """Lifestyle tokenizer: lowercase and split on non-alphanumeric runs."""
    return _WORD_RUN.findall((text or "").lower())


class Vocabulary:
    """Term -> index mapping for one training generation.

    Index 0 is padding and index 1 is the unknown bucket; learned terms
    start at 2, most frequent first (ties in alphabetical order).
    """

    def __init__(self, terms: Optional[Dict[str, int]] = None):
        self.index: Dict[str, int] = {PAD_TOKEN: PAD_INDEX, UNK_TOKEN: UNK_INDEX}
        if terms:
            self.index.update(terms)
        self._vectorizers: Dict[Callable, CountVectorizer] = {}

    @classmethod
    def build(
        cls,
        texts: Iterable[str],
        tokenizer: Callable[[str], List[str]] = tokenize,
        min_frequency: int = 1,
        max_size: int = 3000,
    ) -> "Vocabulary":
        vocab = cls()
        if max_size <= 2:
            return vocab

        vectorizer = CountVectorizer(
            tokenizer=tokenizer,
            token_pattern=None,
            lowercase=False,
            max_features=max_size - 2,
        )
        try:
            counts = vectorizer.fit_transform(list(texts))
        except ValueError:
            # nothing survived tokenization
            return vocab

        terms = vectorizer.get_feature_names_out()
        frequencies = np.asarray(counts.sum(axis=0)).ravel()
        # feature names are alphabetical, so a stable sort keeps ties that way
        for position in np.argsort(-frequencies, kind="stable"):
            if frequencies[position] < min_frequency:
                break
            vocab.index[str(terms[position])] = len(vocab.index)
        return vocab

    def vectorizer(self, tokenizer: Callable[[str], List[str]] = tokenize) -> CountVectorizer:
        """Count vectorizer over this vocabulary; unknown terms land on UNK."""
        if tokenizer not in self._vectorizers:
            index = self.index

            def analyzer(text: str) -> List[str]:
                return [tok if tok in index else UNK_TOKEN for tok in tokenizer(text)]

            self._vectorizers[tokenizer] = CountVectorizer(
                analyzer=analyzer,
                vocabulary=index,
                dtype=np.float64,
            )
        return self._vectorizers[tokenizer]

    def transform(self, texts: Iterable[str], tokenizer: Callable[[str], List[str]] = tokenize):
        """Sparse bag-of-words matrix, one row per text."""
        return self.vectorizer(tokenizer).transform(list(texts))

    def __len__(self) -> int:
        return len(self.index)

    def __contains__(self, term: str) -> bool:
        return term in self.index

    def lookup(self, term: str) -> int:
        return self.index.get(term, UNK_INDEX)

    def to_list(self) -> List[List]:
        return [[term, idx] for term, idx in self.index.items()]

    @classmethod
    def from_list(cls, entries: Sequence[Sequence]) -> "Vocabulary":
        vocab = cls()
        vocab.index = {str(term): int(idx) for term, idx in entries}
        if vocab.index.get(PAD_TOKEN) != PAD_INDEX or vocab.index.get(UNK_TOKEN) != UNK_INDEX:
            raise ValueError("Vocabulary is missing the reserved PAD/UNK entries")
        if sorted(vocab.index.values()) != list(range(len(vocab.index))):
            raise ValueError("Vocabulary indices are not contiguous")
        return vocab


def text_to_vector(
    text: str,
    vocabulary: Vocabulary,
    tokenizer: Callable[[str], List[str]] = tokenize,
) -> np.ndarray:
    """Bag-of-words counts over ``vocabulary``; unknown terms count at UNK."""
    return vocabulary.transform([text], tokenizer).toarray()[0]


def normalize_vector(vector: Sequence[float]) -> np.ndarray:
    """L2-normalize; the zero vector is returned unchanged."""
    arr = np.asarray(vector, dtype=np.float64).reshape(1, -1)
    return normalize(arr)[0]


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    a = np.asarray(vec1, dtype=np.float64)
    b = np.asarray(vec2, dtype=np.float64)
    if a.shape != b.shape:
        return 0.0
    return float(pairwise_cosine(a.reshape(1, -1), b.reshape(1, -1))[0, 0])


def text_to_sequence(text: str, vocabulary: Vocabulary, max_length: int) -> List[int]:
    """Fixed-length index sequence for the lifestyle network (right-padded)."""
    tokens = tokenize_words(text)[:max_length]
    sequence = [vocabulary.lookup(tok) for tok in tokens]
    return sequence + [PAD_INDEX] * (max_length - len(sequence))
