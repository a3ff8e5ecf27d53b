"""
Scoring Engine

Converts clue usage and mistakes into points, grades and score letters.

Scoring matrix (points earned):

| Clues | Correct | 1 mistake | 2+ mistakes |
|-------|---------|-----------|-------------|
| 0     | 3       | 1         | 0           |
| 1     | 2       | 1         | 0           |
| 2     | 1       | 1         | 0           |

Score letters:

|              | 0 clues | 1 clue | 2 clues |
|--------------|---------|--------|---------|
| Correct      | A       | B      | C       |
| 1 mistake    | B       | C      | D       |
| 2+ mistakes  | F       | F      | F       |
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from vocab_session_engine.answer_matcher import AnswerMatcher
from vocab_session_engine.session_state import AnswerGrade, Item, ItemProgress, SessionState

MAX_POINTS_PER_ITEM = 3
MAX_CLUE_LEVEL = 2

SCORE_LETTERS = ("A", "B", "C", "D", "F")

LETTER_DESCRIPTIONS = {
    "A": "Right first time",
    "B": "Right with 1 clue, or 1 mistake without clues",
    "C": "Right with 2 clues, or 1 mistake with 1 clue",
    "D": "1 mistake with 2 clues",
    "F": "Wrong",
}


@dataclass(frozen=True)
class ScoreResult:
    """Score for a single answer."""
    max_points: int
    points_earned: int
    grade: AnswerGrade
    score_letter: str
    score_percent: int


@dataclass(frozen=True)
class AggregateStats:
    """Session totals shown on completion and sent with the completion write."""
    items_total: int
    items_answered: int
    items_correct: int
    items_half_correct: int
    points_earned: int
    max_points: int
    score_percent: int
    elapsed_seconds: int

    def to_dict(self) -> dict:
        return {
            "items_total": self.items_total,
            "items_answered": self.items_answered,
            "items_correct": self.items_correct,
            "items_half_correct": self.items_half_correct,
            "points_earned": self.points_earned,
            "max_points": self.max_points,
            "score_percent": self.score_percent,
            "elapsed_seconds": self.elapsed_seconds,
        }


def _check_clue_level(clue_level: int):
    if clue_level not in range(MAX_CLUE_LEVEL + 1):
        raise ValueError(f"clue_level must be 0-{MAX_CLUE_LEVEL}, got {clue_level}")


def grade_for_mistakes(mistake_count: int) -> AnswerGrade:
    """0 mistakes = correct, 1 = half-correct, 2+ = incorrect."""
    if mistake_count < 0:
        raise ValueError(f"mistake_count must be >= 0, got {mistake_count}")
    if mistake_count == 0:
        return AnswerGrade.CORRECT
    if mistake_count == 1:
        return AnswerGrade.HALF_CORRECT
    return AnswerGrade.INCORRECT


def max_points_for(clue_level: int) -> int:
    """Each revealed clue lowers the ceiling by one point."""
    _check_clue_level(clue_level)
    return MAX_POINTS_PER_ITEM - clue_level


def points_for(grade: AnswerGrade, max_points: int) -> int:
    if grade is AnswerGrade.CORRECT:
        return max_points
    if grade is AnswerGrade.HALF_CORRECT:
        return max(1, max_points // 2)
    return 0


def score_letter(clue_level: int, grade: AnswerGrade) -> str:
    _check_clue_level(clue_level)
    if grade is AnswerGrade.INCORRECT:
        return "F"
    # One mistake costs the same as one extra clue
    offset = 1 if grade is AnswerGrade.HALF_CORRECT else 0
    return SCORE_LETTERS[clue_level + offset]


def describe_score_letter(letter: str) -> str:
    """Human-readable description for a score letter."""
    return LETTER_DESCRIPTIONS[letter]


def letter_rank(letter: str) -> int:
    """Rank of a letter, 0 being best."""
    return SCORE_LETTERS.index(letter)


def calculate_score_percent(points_earned: int, max_points: int) -> int:
    if max_points == 0:
        return 0
    # round half up, matching Math.round on the web client
    return int(100 * points_earned / max_points + 0.5)


def score(clue_level: int, mistake_count: int) -> ScoreResult:
    """
    Score one answer.

    Args:
        clue_level: Clues revealed before answering (0-2)
        mistake_count: Edit distance to the closest accepted answer

    Returns:
        ScoreResult
    """
    max_points = max_points_for(clue_level)
    grade = grade_for_mistakes(mistake_count)
    points = points_for(grade, max_points)
    return ScoreResult(
        max_points=max_points,
        points_earned=points,
        grade=grade,
        score_letter=score_letter(clue_level, grade),
        score_percent=calculate_score_percent(points, max_points),
    )


def grade_answer(
    item: Item,
    raw_answer: str,
    clue_level: int = 0,
    matcher: Optional[AnswerMatcher] = None,
    time_to_answer_ms: Optional[int] = None,
) -> ItemProgress:
    """
    Match and score an answer, producing the item's progress record.

    Raises:
        EmptyAnswerError: If the answer is empty after normalization
    """
    match = (matcher or AnswerMatcher()).evaluate(raw_answer, item.accepted_answers)
    result = score(clue_level, match.mistake_count)
    return ItemProgress(
        item_id=item.item_id,
        user_answer=raw_answer,
        is_correct=result.grade is AnswerGrade.CORRECT,
        grade=result.grade,
        mistake_count=match.mistake_count,
        points_earned=result.points_earned,
        max_points=result.max_points,
        score_letter=result.score_letter,
        clue_level=clue_level,
        matched_answer=match.closest_answer,
        answered_at=datetime.now(),
        time_to_answer_ms=time_to_answer_ms,
    )


def aggregate_stats(state: SessionState) -> AggregateStats:
    """Totals over every answered item; the maximum assumes no clues."""
    answered = [p for p in state.progress_by_item_id.values() if p.has_answered]
    points = sum(p.points_earned for p in answered)
    max_points = state.item_count * MAX_POINTS_PER_ITEM
    return AggregateStats(
        items_total=state.item_count,
        items_answered=len(answered),
        items_correct=sum(1 for p in answered if p.grade is AnswerGrade.CORRECT),
        items_half_correct=sum(1 for p in answered if p.grade is AnswerGrade.HALF_CORRECT),
        points_earned=points,
        max_points=max_points,
        score_percent=calculate_score_percent(points, max_points),
        elapsed_seconds=state.elapsed_seconds,
    )
