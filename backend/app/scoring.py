"""Pure scoring and aggregation over a frozen answer ledger.

Nothing in here touches the database or the clock, so recomputing an outcome
from the same inputs always gives the same answer.
"""
from __future__ import annotations

from fractions import Fraction
from typing import Optional, Sequence

from .models import (
    AnswerEntry,
    Player,
    Question,
    QuestionOutcome,
    QuestionResult,
    RankedUser,
    SessionResults,
)
from .utils import round_half_up, sort_leaderboard


def is_fully_correct(entry: AnswerEntry, correct_ids: set[int]) -> bool:
    return len(entry.answer_ids) == len(correct_ids) and set(entry.answer_ids) == correct_ids


def score_question(
    question: Question,
    question_index: int,
    players: Sequence[Player],
    entries: Sequence[AnswerEntry],
    opened_at: Optional[float],
) -> QuestionOutcome:
    join_order = {p.id: i for i, p in enumerate(players)}
    names = {p.id: p.name for p in players}

    # ignore ledger rows for players that are not part of the session
    entries = [e for e in entries if e.player_id in join_order]

    correct_ids = question.correct_answer_ids()
    correct = [e for e in entries if is_fully_correct(e, correct_ids)]
    # earliest first; identical timestamps fall back to join order
    correct.sort(key=lambda e: (e.timestamp, join_order[e.player_id]))

    awards: dict[str, float] = {p.id: 0.0 for p in players}
    ranks: dict[str, int] = {}
    for rank, entry in enumerate(correct, start=1):
        awards[entry.player_id] = float(exact_award(question.points, rank))
        ranks[entry.player_id] = rank

    players_correct = sorted((names[e.player_id] for e in correct), key=lambda n: (n.lower(), n))

    percent_correct = round_half_up(100 * len(correct) / len(players)) if players else 0

    if entries and opened_at is not None:
        elapsed = [max(e.timestamp - opened_at, 0.0) for e in entries]
        average_answer_time = round_half_up(sum(elapsed) / len(elapsed))
    else:
        average_answer_time = 0

    return QuestionOutcome(
        question_index=question_index,
        points=question.points,
        result=QuestionResult(
            question_id=question.id,
            players_correct_list=players_correct,
            average_answer_time=average_answer_time,
            percent_correct=percent_correct,
        ),
        awards=awards,
        ranks=ranks,
    )


def exact_award(points: float, rank: int) -> Fraction:
    # points are entered as decimals, so go through str to keep 0.1 as 1/10
    return Fraction(str(points)) / rank


def aggregate_results(players: Sequence[Player], outcomes: Sequence[QuestionOutcome]) -> SessionResults:
    """Total every player's awards and rank them, highest first.

    ``players`` must be in join order: equal totals keep that order. Totals
    are summed as fractions from each question's speed ranks, so players with
    the same real score compare equal.
    """
    totals = {p.id: Fraction(0) for p in players}
    for outcome in outcomes:
        for player_id, rank in outcome.ranks.items():
            if player_id in totals:
                totals[player_id] += exact_award(outcome.points, rank)

    leaderboard = sort_leaderboard([{"name": p.name, "score": totals[p.id]} for p in players])
    ordered = sorted(outcomes, key=lambda o: o.question_index)

    return SessionResults(
        users_ranked_by_score=[RankedUser(name=row["name"], score=float(row["score"])) for row in leaderboard],
        question_results=[o.result for o in ordered],
    )
