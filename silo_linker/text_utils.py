"""
Text scanning helpers shared by the anchor selector, the insertion point
locator and the content mutator.

Everything that inspects raw prose or HTML lives here so the graph and
selection logic never touches string parsing directly. All helpers are pure
functions; regular expressions are compiled once at import time.
"""

from __future__ import annotations

import hashlib
import re
from html.parser import HTMLParser
from typing import Dict, Iterator, List, Optional, Sequence, Set, Tuple

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MAX_ANCHOR_WORDS = 6
MAX_ANCHOR_CHARS = 100

# General stopwords, used for anchor validity and title word filtering
STOPWORDS: Set[str] = {
    "a", "an", "the", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "up", "about", "into", "through", "during",
    "before", "after", "above", "below", "between", "out", "off", "over",
    "under", "again", "further", "then", "once", "here", "there", "when",
    "where", "why", "how", "all", "both", "each", "few", "more", "most",
    "other", "some", "such", "no", "nor", "not", "only", "own", "same",
    "so", "than", "too", "very", "can", "will", "just", "should", "now",
    "also", "get", "got", "has", "had", "have", "do", "does", "did",
    "be", "been", "being", "am", "is", "are", "was", "were", "it", "its",
    "he", "she", "we", "they", "them", "his", "her", "our", "your", "my",
    "this", "that", "these", "those", "what", "which", "who", "whom",
    "if", "as", "you", "i", "me", "us", "him", "would", "could",
    "may", "might", "shall", "must", "need", "one", "two", "make",
    "like", "new", "best", "good", "great", "way", "use", "using",
}

# Stopwords for keyword overlap between bodies (words longer than 3 chars)
KEYWORD_STOPWORDS: Set[str] = {
    "the", "and", "for", "with", "from", "this", "that", "are", "was",
    "were", "have", "been", "they", "said", "each", "which", "their",
    "time", "will", "about", "there", "when", "your", "can", "she", "use",
    "how", "our", "out", "many", "then", "them", "these", "some", "her",
    "would", "make", "like", "into", "him", "has", "two", "more", "way",
    "could", "than", "first", "call", "who", "its", "now", "find", "long",
    "down", "day", "did", "get", "come", "made", "may", "part", "also",
    "just", "what", "does", "very", "most", "only", "other", "over",
    "such", "should", "where", "while", "after", "before", "here",
}

# Words stripped from either end of an anchor candidate
EDGE_STOPWORDS: Set[str] = {
    "a", "an", "the", "and", "or", "but", "nor", "to", "of", "in", "on",
    "at", "for", "with", "by", "from", "as", "into", "is", "are", "was",
    "were", "be", "so", "than", "that", "this", "your", "our", "its",
}

EDGE_PUNCTUATION = "!\"#$%&'()*+,-./:;<=>?@[\\]^_`{|}~“”‘’«»…–—"

# Topical term clusters used for semantic anchor phrases
SEMANTIC_CLUSTERS: Dict[str, List[str]] = {
    "legal": ["law", "legal", "attorney", "lawyer", "court", "case", "settlement", "injury", "accident"],
    "health": ["health", "medical", "doctor", "treatment", "therapy", "care", "wellness", "hospital"],
    "business": ["business", "company", "corporate", "management", "marketing", "sales", "finance"],
    "technology": ["technology", "software", "digital", "computer", "tech", "app", "system"],
    "finance": ["finance", "financial", "money", "investment", "bank", "credit", "loan"],
    "education": ["education", "school", "learning", "student", "teacher", "course", "training"],
}

# Related terms keyed by common anchor words, used to place links nearby
RELATED_TERMS: Dict[str, List[str]] = {
    "law": ["legal", "attorney", "lawyer", "court"],
    "legal": ["law", "attorney", "lawyer", "court"],
    "attorney": ["lawyer", "legal", "law"],
    "lawyer": ["attorney", "legal", "law"],
    "health": ["medical", "wellness", "care"],
    "medical": ["health", "doctor", "treatment"],
    "business": ["company", "corporate", "enterprise"],
    "company": ["business", "corporate", "organization"],
    "technology": ["tech", "software", "digital"],
    "software": ["technology", "tech", "application"],
    "finance": ["financial", "money", "investment"],
    "money": ["finance", "financial", "funds"],
}

_WORD_RE = re.compile(r"[a-z0-9][a-z0-9'\-]*")
_CASED_WORD_RE = re.compile(r"[A-Za-z0-9][\w'\-]*")
_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")
_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]*")
_PARAGRAPH_TAG_RE = re.compile(r"<p\b[^>]*>", re.IGNORECASE)
_BLANK_LINE_RE = re.compile(r"\n\s*\n")

_PROTECTED_PATTERNS = (
    re.compile(r"<!--.*?-->", re.DOTALL),
    re.compile(r"<a\b[^>]*>.*?</a\s*>", re.DOTALL | re.IGNORECASE),
    re.compile(r"<(script|style|code|pre)\b[^>]*>.*?</\1\s*>", re.DOTALL | re.IGNORECASE),
    re.compile(r"<[^>]+>"),
)


# ---------------------------------------------------------------------------
# HTML to text
# ---------------------------------------------------------------------------


class _TextExtractor(HTMLParser):
    """Extract plain text from HTML, stripping all tags."""

    def __init__(self):
        super().__init__()
        self._parts: List[str] = []
        self._skip = False

    def handle_starttag(self, tag, attrs) -> None:
        if tag in ("script", "style", "noscript"):
            self._skip = True

    def handle_endtag(self, tag: str) -> None:
        if tag in ("script", "style", "noscript"):
            self._skip = False

    def handle_data(self, data: str) -> None:
        if not self._skip:
            self._parts.append(data)

    def get_text(self) -> str:
        return "".join(self._parts)


def strip_tags(html: str) -> str:
    """Extract plain text from HTML with whitespace collapsed."""
    if not html:
        return ""
    if "<" not in html and "&" not in html:
        return normalize_whitespace(html)
    parser = _TextExtractor()
    try:
        parser.feed(html)
        parser.close()
        text = parser.get_text()
    except Exception:
        text = _TAG_RE.sub(" ", html)
    return normalize_whitespace(text)


def normalize_whitespace(text: str) -> str:
    return _WS_RE.sub(" ", text or "").strip()


def content_hash(content: str) -> str:
    """Generate a short hash of content for change detection."""
    return hashlib.md5(content.encode("utf-8", errors="replace")).hexdigest()[:12]


# ---------------------------------------------------------------------------
# Tokens and keywords
# ---------------------------------------------------------------------------


def tokenize(text: str) -> List[str]:
    """Lowercase word tokens."""
    return _WORD_RE.findall((text or "").lower())


def cased_words(text: str) -> List[str]:
    """Word tokens with their original casing."""
    return _CASED_WORD_RE.findall(text or "")


def meaningful_words(text: str, min_length: int = 4, stopwords: Optional[Set[str]] = None) -> List[str]:
    """Unique lowercase words of at least ``min_length`` chars, in order of first use."""
    stop = KEYWORD_STOPWORDS if stopwords is None else stopwords
    seen: Set[str] = set()
    result: List[str] = []
    for token in tokenize(text):
        if len(token) < min_length or token in stop or token in seen:
            continue
        seen.add(token)
        result.append(token)
    return result


def significant_title_words(title: str) -> List[str]:
    """Title words (original casing) that carry meaning on their own."""
    return [
        w for w in cased_words(title)
        if len(w) >= 4 and w.lower() not in STOPWORDS
    ]


def jaccard(a: Set[str], b: Set[str]) -> float:
    if not a or not b:
        return 0.0
    union = a | b
    return len(a & b) / len(union) if union else 0.0


def word_windows(words: Sequence[str], size: int) -> Iterator[Tuple[str, ...]]:
    """Yield contiguous windows of ``size`` words, left to right."""
    for start in range(0, len(words) - size + 1):
        yield tuple(words[start:start + size])


# ---------------------------------------------------------------------------
# Phrase search
# ---------------------------------------------------------------------------


def _phrase_pattern(phrase: str, word_boundary: bool = True) -> Optional["re.Pattern[str]"]:
    words = (phrase or "").split()
    if not words:
        return None
    body = r"\s+".join(re.escape(w) for w in words)
    if word_boundary:
        body = r"(?<!\w)" + body + r"(?!\w)"
    return re.compile(body, re.IGNORECASE)


def protected_ranges(html: str) -> List[Tuple[int, int]]:
    """Spans of ``html`` that must never be wrapped in a new link.

    Covers tags, comments (including link markers), existing anchors and
    script/style/code/pre blocks.
    """
    ranges: List[Tuple[int, int]] = []
    for pattern in _PROTECTED_PATTERNS:
        for match in pattern.finditer(html or ""):
            ranges.append((match.start(), match.end()))
    ranges.sort()
    return ranges


def _overlaps(start: int, end: int, ranges: Sequence[Tuple[int, int]]) -> bool:
    for r_start, r_end in ranges:
        if r_start >= end:
            break
        if r_end > start:
            return True
    return False


def find_linkable_span(
    html: str,
    phrase: str,
    word_boundary: bool = True,
    ranges: Optional[Sequence[Tuple[int, int]]] = None,
) -> Optional[Tuple[int, int]]:
    """Return the first ``(start, end)`` of ``phrase`` in ``html`` outside protected ranges."""
    pattern = _phrase_pattern(phrase, word_boundary)
    if pattern is None or not html:
        return None
    if ranges is None:
        ranges = protected_ranges(html)
    for match in pattern.finditer(html):
        if not _overlaps(match.start(), match.end(), ranges):
            return match.start(), match.end()
    return None


def find_in_text(text: str, phrase: str, word_boundary: bool = True) -> Optional[str]:
    """Return the first occurrence of ``phrase`` in plain ``text``, with the text's casing."""
    pattern = _phrase_pattern(phrase, word_boundary)
    if pattern is None or not text:
        return None
    match = pattern.search(text)
    return match.group(0) if match else None


def contains_word(text: str, word: str) -> bool:
    return find_in_text(text, word) is not None


# ---------------------------------------------------------------------------
# Sentences and paragraphs
# ---------------------------------------------------------------------------


def split_sentences(text: str) -> List[Tuple[int, str]]:
    """Split on ``.!?`` returning ``(offset, sentence)`` with offsets into ``text``."""
    sentences: List[Tuple[int, str]] = []
    for match in _SENTENCE_RE.finditer(text or ""):
        chunk = match.group(0)
        stripped = chunk.lstrip()
        if not stripped.strip():
            continue
        offset = match.start() + (len(chunk) - len(stripped))
        sentences.append((offset, stripped.rstrip()))
    return sentences


def paragraph_offsets(body: str) -> List[int]:
    """Start offsets of paragraphs: inside ``<p>`` tags if present, else blank-line blocks."""
    if not body:
        return []
    tag_matches = list(_PARAGRAPH_TAG_RE.finditer(body))
    if tag_matches:
        return [m.end() for m in tag_matches]

    offsets: List[int] = []
    start = 0
    for match in _BLANK_LINE_RE.finditer(body):
        if body[start:match.start()].strip():
            offsets.append(start + (len(body[start:]) - len(body[start:].lstrip())))
        start = match.end()
    if body[start:].strip():
        offsets.append(start + (len(body[start:]) - len(body[start:].lstrip())))
    return offsets


# ---------------------------------------------------------------------------
# Term dictionaries
# ---------------------------------------------------------------------------


def related_terms(anchor_text: str) -> List[str]:
    """Related terms for the whole anchor, then for each of its words."""
    lowered = (anchor_text or "").strip().lower()
    terms: List[str] = list(RELATED_TERMS.get(lowered, []))
    for word in tokenize(lowered):
        terms.extend(RELATED_TERMS.get(word, []))
    seen: Set[str] = set()
    unique: List[str] = []
    for term in terms:
        if term not in seen:
            seen.add(term)
            unique.append(term)
    return unique


def matching_clusters(text: str) -> List[str]:
    """Names of the topical clusters with at least one term present in ``text``."""
    return [
        name for name, terms in SEMANTIC_CLUSTERS.items()
        if any(contains_word(text, term) for term in terms)
    ]


# ---------------------------------------------------------------------------
# Anchor canonicalization
# ---------------------------------------------------------------------------


def is_valid_anchor(text: Optional[str]) -> bool:
    """At most 100 chars with at least one meaningful token longer than 2 chars."""
    if not text or not text.strip() or len(text) > MAX_ANCHOR_CHARS:
        return False
    return any(len(t) > 2 and t not in STOPWORDS for t in re.findall(r"[\w']+", text.lower()))


def _trim_edges(words: List[str]) -> List[str]:
    words = list(words)
    while words:
        first = words[0].lstrip(EDGE_PUNCTUATION)
        if len(words) == 1:
            first = first.rstrip(EDGE_PUNCTUATION)
        if not first or first.lower() in EDGE_STOPWORDS:
            words.pop(0)
            continue
        words[0] = first
        last = words[-1].rstrip(EDGE_PUNCTUATION)
        if not last or last.lower() in EDGE_STOPWORDS:
            words.pop()
            continue
        words[-1] = last
        break
    return words


def clean_anchor(
    text: Optional[str],
    max_words: int = MAX_ANCHOR_WORDS,
    max_chars: int = MAX_ANCHOR_CHARS,
) -> Optional[str]:
    """Canonicalize an anchor candidate, or return None if nothing usable remains.

    Collapses whitespace, strips edge punctuation and edge stopwords, caps the
    result at ``max_words`` words and ``max_chars`` characters.
    """
    if not text:
        return None
    words = _trim_edges(strip_tags(str(text)).split())
    words = _trim_edges(words[:max_words])
    while words and len(" ".join(words)) > max_chars:
        if len(words) == 1:
            words = [words[0][:max_chars]]
            break
        words = _trim_edges(words[:-1])
    if not words:
        return None
    candidate = " ".join(words)
    return candidate if is_valid_anchor(candidate) else None
