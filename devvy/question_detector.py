"""
Question detection heuristic.

Finds sentences in an agent's reply that ask something, so the
orchestrator can hand them to an answering agent. This is a lexical
heuristic; false positives and negatives are expected.
"""

import re

# A '?' stays on its sentence; '.' and '!' separators are dropped
SENTENCE_BOUNDARY = re.compile(r'(?<=\?)\s+|[.!]\s+')

QUESTION_PATTERNS = [
    re.compile(r'^(should|could|would|can|may|might|shall|will|must)\s+(i|we|you)\b', re.IGNORECASE),
    re.compile(r'^(what|which|who|where|when|why|how)\s+', re.IGNORECASE),
    re.compile(r'^(do|does|did|is|are|was|were|has|have|had)\s+', re.IGNORECASE),
    re.compile(r'^(please\s+)?(tell|explain|clarify|specify|confirm)\b', re.IGNORECASE),
    re.compile(r'^(any\s+)?(thoughts|suggestions|recommendations|preferences)\s+on\b', re.IGNORECASE),
]


def split_sentences(text: str) -> list[str]:
    return [s.strip() for s in SENTENCE_BOUNDARY.split(text) if s.strip()]


def is_question(sentence: str) -> bool:
    if "?" in sentence:
        return True
    return any(p.search(sentence) for p in QUESTION_PATTERNS)


def detect_questions(text: str) -> list[str]:
    """
    Return the question-like sentences of `text`, trimmed, in order.

    Example:
        detect_questions("Should I add error handling? What about logging?")
        # ["Should I add error handling?", "What about logging?"]
    """
    if not text:
        return []
    return [s for s in split_sentences(text) if is_question(s)]


def has_questions(text: str) -> bool:
    return bool(detect_questions(text))
