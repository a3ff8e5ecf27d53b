"""
Answer Matcher

Normalizes free-text answers and compares them against a list of accepted
answers. Exact matches score zero mistakes; anything else is measured by the
edit distance to the closest accepted answer.
"""

import re
from dataclasses import dataclass
from typing import Optional, Sequence

from vocab_session_engine.errors import EmptyAnswerError

# Apostrophe look-alikes typed by mobile keyboards and IMEs
_APOSTROPHES = re.compile(r"[’‘ʼ`´′＇]")
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class MatchResult:
    """Outcome of comparing an answer with the accepted answers."""
    is_exact_match: bool
    mistake_count: int
    closest_answer: Optional[str] = None


def normalize_answer(answer: str) -> str:
    """
    Normalize an answer for comparison.

    - Unify apostrophe variants to '
    - Lowercase
    - Trim and collapse internal whitespace
    """
    unified = _APOSTROPHES.sub("'", answer)
    return _WHITESPACE.sub(" ", unified.lower()).strip()


def levenshtein_distance(a: str, b: str) -> int:
    """
    Minimum number of single-character inserts, deletes and substitutions
    needed to turn a into b.
    """
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(
                previous[j] + 1,  # deletion
                current[j - 1] + 1,  # insertion
                previous[j - 1] + cost,  # substitution
            ))
        previous = current
    return previous[-1]


class AnswerMatcher:
    """Compares typed answers against accepted answers."""

    def evaluate(self, raw: str, accepted: Sequence[str]) -> MatchResult:
        """
        Evaluate a typed answer.

        Args:
            raw: Answer as typed by the learner
            accepted: Accepted answers for the item

        Returns:
            MatchResult with the mistake count against the closest answer

        Raises:
            EmptyAnswerError: If the answer is empty after normalization
            ValueError: If there are no accepted answers
        """
        if not accepted:
            raise ValueError("No accepted answers to compare against")

        answer = normalize_answer(raw)
        if not answer:
            raise EmptyAnswerError("Answer is empty")

        normalized = [(candidate, normalize_answer(candidate)) for candidate in accepted]

        for candidate, target in normalized:
            if answer == target:
                return MatchResult(is_exact_match=True, mistake_count=0, closest_answer=candidate)

        closest, distance = None, None
        for candidate, target in normalized:
            candidate_distance = levenshtein_distance(answer, target)
            if distance is None or candidate_distance < distance:
                closest, distance = candidate, candidate_distance

        return MatchResult(is_exact_match=False, mistake_count=distance, closest_answer=closest)


_default_matcher = AnswerMatcher()


def evaluate(raw: str, accepted: Sequence[str]) -> MatchResult:
    """Evaluate with the shared matcher instance."""
    return _default_matcher.evaluate(raw, accepted)
