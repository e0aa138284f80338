from __future__ import annotations

import logging
import math
import re
import unicodedata
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from ...constants import BM25_B, BM25_K1, MIN_SCORE_THRESHOLD, MIN_TOKEN_LENGTH

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Anything that is not a letter, digit or whitespace in any script.
_PUNCTUATION = re.compile(r"[^\w\s]|_")


VIETNAMESE_STOPWORDS: frozenset[str] = frozenset(
    {
        "và",
        "là",
        "của",
        "có",
        "cho",
        "với",
        "các",
        "những",
        "một",
        "này",
        "đó",
        "kia",
        "thì",
        "mà",
        "được",
        "bị",
        "không",
        "chưa",
        "trong",
        "ngoài",
        "trên",
        "dưới",
        "để",
        "khi",
        "đã",
        "sẽ",
        "đang",
        "vẫn",
        "cũng",
        "như",
        "nhưng",
        "hay",
        "hoặc",
        "nếu",
        "vì",
        "nên",
        "rằng",
        "thế",
        "vậy",
        "lại",
        "ra",
        "vào",
        "lên",
        "xuống",
        "rồi",
        "nữa",
        "rất",
        "lắm",
        "quá",
        "từ",
        "tới",
        "đến",
        "về",
        "theo",
        "sau",
        "trước",
        "nhiều",
        "ít",
        "mọi",
        "mỗi",
        "cái",
        "chiếc",
        "việc",
        "điều",
        "nào",
        "gì",
        "ai",
        "đây",
        "ấy",
        "nhé",
        "nha",
        "ạ",
        "à",
        "ừ",
        "vâng",
        "dạ",
    }
)

ENGLISH_STOPWORDS: frozenset[str] = frozenset(
    {
        "an",
        "and",
        "are",
        "as",
        "at",
        "be",
        "by",
        "for",
        "from",
        "has",
        "have",
        "in",
        "is",
        "it",
        "of",
        "on",
        "or",
        "that",
        "the",
        "their",
        "this",
        "to",
        "was",
        "were",
        "what",
        "when",
        "where",
        "which",
        "who",
        "why",
        "with",
    }
)

STOPWORDS: frozenset[str] = VIETNAMESE_STOPWORDS | ENGLISH_STOPWORDS


def tokenize(text: str) -> list[str]:
    """
    Tokenize free text into lowercase word tokens.

    Letters and digits of any script are kept (Vietnamese diacritics
    survive), punctuation is replaced by whitespace, and tokens shorter
    than two characters or found in the stopword set are dropped.

    Args:
        text: Input string to tokenize

    Returns:
        List of tokens in their original order
    """
    if not text:
        return []
    normalized = unicodedata.normalize("NFC", text).lower()
    cleaned = _PUNCTUATION.sub(" ", normalized)
    return [
        token
        for token in cleaned.split()
        if len(token) >= MIN_TOKEN_LENGTH and token not in STOPWORDS
    ]


def extract_keywords(text: str, max_keywords: int = 10) -> list[str]:
    """Distinct tokens ordered by frequency, ties broken by first appearance."""
    counts = Counter(tokenize(text))
    return [token for token, _ in counts.most_common(max_keywords)]


@dataclass(frozen=True)
class IndexedDocument(Generic[T]):
    """A scorable unit: searchable tokens plus presentation metadata."""

    doc_id: str
    tokens: tuple[str, ...]
    payload: T
    order: int = 0
    always_active: bool = False
    enabled: bool = True


@dataclass
class _Posting(Generic[T]):
    document: IndexedDocument[T]
    term_freq: Counter[str]
    length: int


@dataclass
class BM25Index(Generic[T]):
    """
    In-memory BM25 index over a fixed corpus.

    The index has no incremental update: ``index()`` replaces all prior
    state, so any change to the corpus means a full re-index.

    Warning:
        Sized for hundreds of documents (lorebooks, memories of one
        conversation). Every query scans the whole corpus.
    """

    k1: float = BM25_K1
    b: float = BM25_B
    threshold: float = MIN_SCORE_THRESHOLD
    doc_freq: Counter[str] = field(default_factory=Counter)
    avg_doc_len: float = 0.0
    _postings: list[_Posting[T]] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self._postings)

    def index(self, documents: Iterable[IndexedDocument[T]]) -> None:
        self._postings = [
            _Posting(document=doc, term_freq=Counter(doc.tokens), length=len(doc.tokens))
            for doc in documents
            if doc.enabled
        ]
        self.doc_freq = Counter()
        if not self._postings:
            self.avg_doc_len = 0.0
            return

        total_len = sum(posting.length for posting in self._postings)
        self.avg_doc_len = total_len / len(self._postings)
        for posting in self._postings:
            self.doc_freq.update(posting.term_freq.keys())

    def idf(self, term: str) -> float:
        n_docs = len(self._postings)
        df = self.doc_freq.get(term, 0)
        return math.log((n_docs - df + 0.5) / (df + 0.5) + 1.0)

    def _score(self, posting: _Posting[T], query_terms: list[str]) -> float:
        if self.avg_doc_len <= 0:
            return 0.0
        norm = self.k1 * (1 - self.b + self.b * (posting.length / self.avg_doc_len))
        score = 0.0
        # Repeated query terms contribute once per occurrence.
        for term in query_terms:
            tf = posting.term_freq.get(term, 0)
            if tf == 0:
                continue
            score += self.idf(term) * (tf * (self.k1 + 1)) / (tf + norm)
        return score

    def _passes(self, score: float) -> bool:
        return score > 0 and score >= self.threshold

    def score(self, doc_id: str, query: str) -> float:
        """Score one indexed document against a raw query string."""
        query_terms = tokenize(query)
        for posting in self._postings:
            if posting.document.doc_id == doc_id:
                return self._score(posting, query_terms)
        raise KeyError(doc_id)

    def rank(self, query: str) -> list[tuple[IndexedDocument[T], float]]:
        """Score every non always-active document, best first, above threshold."""
        query_terms = tokenize(query)
        if not query_terms:
            return []
        scored = [
            (posting.document, self._score(posting, query_terms))
            for posting in self._postings
            if not posting.document.always_active
        ]
        ranked = [item for item in scored if self._passes(item[1])]
        ranked.sort(key=lambda item: item[1], reverse=True)
        return ranked

    def search(self, query: str, limit: int) -> list[IndexedDocument[T]]:
        """
        Return always-active documents plus the best scored ones.

        Always-active documents are included unconditionally, even when the
        query has no usable terms. Scored documents fill the remaining
        ``limit - len(always_active)`` slots. The result is ordered by each
        document's authoring ``order``, not by score.
        """
        if not self._postings:
            return []

        always_active = [p.document for p in self._postings if p.document.always_active]
        remaining = max(0, limit - len(always_active))
        scored = [doc for doc, _ in self.rank(query)[:remaining]] if remaining else []

        results = always_active + scored
        results.sort(key=lambda doc: doc.order)
        logger.debug(
            "bm25 search corpus=%s always_active=%s scored=%s",
            len(self._postings),
            len(always_active),
            len(scored),
        )
        return results

    def has_matches(self, query: str) -> bool:
        if not self._postings:
            return False
        if any(p.document.always_active for p in self._postings):
            return True
        query_terms = tokenize(query)
        if not query_terms:
            return False
        return any(
            self._passes(self._score(posting, query_terms))
            for posting in self._postings
        )
