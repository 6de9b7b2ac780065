"""
Tag extraction from folder names.

Parent folders become categories; the folder name itself is segmented with
jieba so mixed Chinese/Latin titles yield useful tags.
"""
from __future__ import annotations

import logging
import re
import threading
from typing import Iterable, List, Optional

import jieba

logger = logging.getLogger(__name__)

MAX_CATEGORY_LENGTH = 20
MIN_SEGMENTED_NAME_LENGTH = 4
SKIP_WORDS = {"MB", "GB", "作品", "写真", "写真集", "原创", "原創", "订阅"}
DEFAULT_EXTRA_WORDS = ("夏夏子",)

_ASCII_SYMBOLS = set("!\"#$%&'()*+,-./:;<=>?@[\\]^_{|}~")
_BRACKETS_AND_SPACE = set(" []()\t\n\r")
_WHITESPACE = set(" \t\n\r")
_STARTS_WITH_NUMBER = re.compile(r"^P?\d+V?")
_STARTS_WITH_PART = re.compile(r"^part")


def _dedupe(items: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


class TagExtractor:
    """Owns a jieba tokenizer; create once, share, and ``close()`` on shutdown."""

    def __init__(self, extra_words: Iterable[str] = DEFAULT_EXTRA_WORDS):
        jieba.setLogLevel(logging.WARNING)
        self._tokenizer: Optional[jieba.Tokenizer] = jieba.Tokenizer()
        self._lock = threading.Lock()
        self._extra_words = list(extra_words or ())
        self._initialized = False

    def _ensure_ready(self) -> jieba.Tokenizer:
        with self._lock:
            if self._tokenizer is None:
                raise RuntimeError("tag extractor has been closed")
            if not self._initialized:
                self._tokenizer.initialize()
                for word in self._extra_words:
                    self._tokenizer.add_word(word)
                self._initialized = True
                logger.info("[tags] tokenizer ready (%d extra words)", len(self._extra_words))
            return self._tokenizer

    def open(self) -> "TagExtractor":
        """Load the dictionary now instead of on the first long name."""
        self._ensure_ready()
        return self

    def segment(self, name: str) -> List[str]:
        tokenizer = self._ensure_ready()
        return list(tokenizer.cut(name, HMM=True))

    def extract(self, categories: Iterable[str], name: str) -> List[str]:
        tags = [
            c for c in categories
            if c and len(c) <= MAX_CATEGORY_LENGTH and not (set(c) & _WHITESPACE)
        ]
        if len(name) >= MIN_SEGMENTED_NAME_LENGTH:
            for word in self.segment(name):
                if word in SKIP_WORDS:
                    continue
                if _STARTS_WITH_NUMBER.match(word) or _STARTS_WITH_PART.match(word):
                    continue
                if len(word) > 1 and not (set(word) & _BRACKETS_AND_SPACE) and not (set(word) & _ASCII_SYMBOLS):
                    tags.append(word)
        return _dedupe(tags)

    def close(self) -> None:
        with self._lock:
            self._tokenizer = None
            self._initialized = False

    def __enter__(self) -> "TagExtractor":
        return self.open()

    def __exit__(self, *exc) -> None:
        self.close()
