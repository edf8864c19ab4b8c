"""Query processing — tokens, quoted phrases and negation-aware stopword removal."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

STOPWORDS = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "by", "for", "from", "has", "he",
        "in", "is", "it", "its", "of", "on", "that", "the", "to", "was", "were",
        "will", "with", "am", "been", "being", "do", "does", "did", "doing", "i",
        "me", "my", "myself", "we", "our", "ours", "ourselves", "you", "your",
        "yours", "yourself", "yourselves", "him", "his", "himself", "she", "her",
        "hers", "herself", "itself", "they", "them", "their", "theirs",
        "themselves", "what", "which", "who", "whom", "this", "these", "those",
        "have", "had", "having", "would", "should", "could", "ought", "im",
        "youre", "hes", "shes", "theyre", "ive", "youve", "weve", "theyve", "id",
        "youd", "hed", "shed", "wed", "theyd", "ill", "youll", "hell", "shell",
        "theyll", "isnt", "arent", "wasnt", "werent", "hasnt", "havent", "hadnt",
        "doesnt", "dont", "didnt", "wont", "wouldnt", "shouldnt", "couldnt",
        "cant", "cannot", "mustnt", "lets", "thats", "whos", "whats", "heres",
        "theres", "whens", "wheres", "whys", "hows", "because", "why", "how",
        "when", "where", "then", "here", "there", "all", "any", "both", "each",
        "few", "more", "most", "other", "some", "such", "no", "nor", "not",
        "only", "own", "same", "so", "than", "too", "very", "s", "t", "can",
        "just", "d", "ll", "m", "o", "re", "ve", "y", "ain", "about", "above",
        "after", "again", "against", "below", "between", "but", "during", "into",
        "once", "or", "out", "over", "through", "under", "until", "up", "while",
        "vs", "versus", "via",
    }
)  # fmt: skip

# Negations and contrastive qualifiers change query meaning; never dropped.
PRESERVED_WORDS = frozenset(
    {
        "not", "no", "never", "without", "except", "but", "however", "although",
        "despite", "though", "unless", "unlike", "won't", "don't", "can't",
        "cannot", "couldn't", "shouldn't", "wouldn't", "isn't", "aren't",
        "wasn't", "weren't", "hasn't", "haven't", "hadn't", "doesn't", "didn't",
        "none", "neither", "nor",
    }
)  # fmt: skip

# A double-quoted span, or any other run of non-whitespace
_TOKEN_PATTERN = re.compile(r'"([^"]*)"|(\S+)')
_PUNCTUATION = re.compile(r"[^\w\s']")


@dataclass(frozen=True, slots=True)
class ProcessedQuery:
    """Result of :func:`process_query`.

    ``tokens`` keeps query order. Quoted phrases appear in ``tokens`` as a
    single case-preserved unit and are listed once in ``phrases``.
    ``expanded_tokens`` equals ``tokens``: no synonym expansion is done.
    """

    original: str
    tokens: list[str] = field(default_factory=list)
    phrases: list[str] = field(default_factory=list)
    expanded_tokens: list[str] = field(default_factory=list)

    @property
    def processed(self) -> str:
        return " ".join(self.tokens)


def normalize_word(word: str) -> str:
    """Lower-case a word. No stemming."""
    return word.lower()


def _clean(raw: str) -> str:
    return _PUNCTUATION.sub("", normalize_word(raw)).strip("'")


def _keep(token: str) -> bool:
    if token in PRESERVED_WORDS:
        return True
    return len(token) >= 2 and token not in STOPWORDS


def process_query(query: str) -> ProcessedQuery:
    """Tokenize *query* for title matching and term boosts."""
    original = query.strip()
    tokens: list[str] = []
    phrases: list[str] = []

    for match in _TOKEN_PATTERN.finditer(original):
        phrase, word = match.group(1), match.group(2)
        if phrase is not None:
            phrase = " ".join(phrase.split())
            if not phrase:
                continue
            if phrase not in phrases:
                phrases.append(phrase)
            tokens.append(phrase)
            continue

        token = _clean(word)
        if token and _keep(token):
            tokens.append(token)

    logger.debug("Query processing: %r -> tokens %s, phrases %s", original, tokens, phrases)
    return ProcessedQuery(
        original=original,
        tokens=tokens,
        phrases=phrases,
        expanded_tokens=list(tokens),
    )
