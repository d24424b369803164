"""Suggestion search used to reconcile unmatched quote lines."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from rapidfuzz import fuzz
from sklearn.feature_extraction.text import TfidfVectorizer
from sklearn.metrics.pairwise import linear_kernel

logger = logging.getLogger(__name__)

TFIDF_WEIGHT = 0.6
FUZZY_WEIGHT = 0.4


@dataclass
class SearchResult:
    """One candidate BOM line for an unmatched quote description."""

    text: str
    score: float
    metadata: Dict[str, Any]


class SearchProvider(ABC):
    """Ranks indexed BOM lines against free-form quote descriptions."""

    def __init__(self) -> None:
        self._is_indexed = False

    @property
    def is_indexed(self) -> bool:
        return self._is_indexed

    @abstractmethod
    def index(
        self,
        frame: pd.DataFrame,
        text_columns: Sequence[str],
        metadata_columns: Optional[Sequence[str]] = None,
    ) -> None:
        """Index the BOM lines in ``frame``."""

    @abstractmethod
    def search(self, query: str, top_k: int = 5) -> List[SearchResult]:
        """Return up to ``top_k`` BOM lines closest to ``query``."""


class TfidfSearchProvider(SearchProvider):
    """TF-IDF over BOM descriptions blended with a fuzzy token score."""

    def __init__(self) -> None:
        super().__init__()
        self._vectorizer = TfidfVectorizer(ngram_range=(1, 2), min_df=1)
        self._matrix = None
        self._documents: List[str] = []
        self._metadata: List[Dict[str, Any]] = []

    def index(
        self,
        frame: pd.DataFrame,
        text_columns: Sequence[str],
        metadata_columns: Optional[Sequence[str]] = None,
    ) -> None:
        if not text_columns:
            raise ValueError("BOM index needs at least one text column")

        logger.debug("Indexing %d BOM lines for quote suggestions", len(frame))
        corpus = _combine_text_columns(frame, text_columns)
        self._documents = corpus
        try:
            self._matrix = self._vectorizer.fit_transform(corpus)
        except ValueError:
            # Empty vocabulary; fall back to fuzzy scoring only.
            logger.debug("TF-IDF vocabulary is empty, using fuzzy scores only")
            self._matrix = None

        if metadata_columns:
            available = [column for column in metadata_columns if column in frame.columns]
            self._metadata = frame[available].to_dict(orient="records") if available else [{} for _ in corpus]
        else:
            self._metadata = frame.to_dict(orient="records")

        self._is_indexed = True

    def search(self, query: str, top_k: int = 5) -> List[SearchResult]:
        if not self.is_indexed:
            raise RuntimeError("BOM lines must be indexed before searching")

        if not query.strip() or not self._documents:
            return []

        if self._matrix is not None:
            query_vector = self._vectorizer.transform([query])
            tfidf_scores = linear_kernel(query_vector, self._matrix).flatten()
        else:
            tfidf_scores = np.zeros(len(self._documents))
        fuzzy_scores = np.array([fuzz.token_sort_ratio(query, document) / 100 for document in self._documents])
        scores = TFIDF_WEIGHT * tfidf_scores + FUZZY_WEIGHT * fuzzy_scores
        best_indices = np.argsort(scores, kind="stable")[::-1]

        results: List[SearchResult] = []
        for index in best_indices[:top_k]:
            score = float(scores[index])
            if score <= 0:
                continue
            metadata = self._metadata[index] if index < len(self._metadata) else {}
            results.append(SearchResult(text=self._documents[index], score=score, metadata=metadata))
        return results


def create_search_provider(provider_name: str = "tfidf") -> SearchProvider:
    """Return the suggestion provider named in configuration."""

    provider_name = (provider_name or "tfidf").lower()
    if provider_name not in {"tfidf", "local", "fallback"}:
        logger.warning("Unknown suggestion provider %r, using TF-IDF with fuzzy scoring", provider_name)
    return TfidfSearchProvider()


def _combine_text_columns(frame: pd.DataFrame, columns: Sequence[str]) -> List[str]:
    combined: List[str] = []
    for _, row in frame[list(columns)].fillna(" ").astype(str).iterrows():
        combined.append(" ".join(str(value) for value in row if value).strip())
    return combined


__all__ = [
    "SearchProvider",
    "SearchResult",
    "TfidfSearchProvider",
    "create_search_provider",
]
