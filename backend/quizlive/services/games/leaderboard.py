"""Standings derived on demand from the Answer rows of one game.

Nothing here is cached: every call re-reads the answers, so a client that
wants its rank after a reveal simply asks again.
"""

import csv
import io
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence


@dataclass
class Standing:
    rank: int
    participant_id: int
    nickname: str
    avatar_id: Optional[str]
    team_id: Optional[int]
    total_score: int = 0
    correct_count: int = 0
    answered_count: int = 0
    joined_at: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class TeamStanding:
    rank: int
    team_id: int
    total_score: int = 0
    member_ids: List[int] = field(default_factory=list)

    @property
    def member_count(self) -> int:
        return len(self.member_ids)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['member_count'] = self.member_count
        return data


def rank_standings(participants: Sequence[Dict[str, Any]], answers: Sequence[Dict[str, Any]]) -> List[Standing]:
    """Sum answer scores per participant and rank them.

    Ties on total_score go to whoever joined first, then to the lower id.
    """
    totals: Dict[int, int] = defaultdict(int)
    correct: Dict[int, int] = defaultdict(int)
    answered: Dict[int, int] = defaultdict(int)
    for a in answers:
        pid = a['participant_id']
        totals[pid] += int(a.get('score') or 0)
        answered[pid] += 1
        if a.get('is_correct'):
            correct[pid] += 1

    standings = [
        Standing(
            rank=0,
            participant_id=p['id'],
            nickname=p['nickname'],
            avatar_id=p.get('avatar_id'),
            team_id=p.get('team_id'),
            total_score=totals[p['id']],
            correct_count=correct[p['id']],
            answered_count=answered[p['id']],
            joined_at=p.get('created_at') or 0.0,
        )
        for p in participants
    ]
    standings.sort(key=lambda s: (-s.total_score, s.joined_at, s.participant_id))
    for position, s in enumerate(standings, start=1):
        s.rank = position
    return standings


def compute_standings(store, game_id: int) -> List[Standing]:
    return rank_standings(store.list_participants(game_id), store.answers_for_game(game_id))


def compute_team_standings(standings: Sequence[Standing]) -> List[TeamStanding]:
    teams: Dict[int, TeamStanding] = {}
    for s in standings:
        if s.team_id is None:
            continue
        team = teams.setdefault(s.team_id, TeamStanding(rank=0, team_id=s.team_id))
        team.total_score += s.total_score
        team.member_ids.append(s.participant_id)
    ranked = sorted(teams.values(), key=lambda t: (-t.total_score, t.team_id))
    for position, t in enumerate(ranked, start=1):
        t.rank = position
    return ranked


def question_stats(store, game_id: int) -> List[Dict[str, Any]]:
    """Per-question answer counts and correct percentage for one game."""
    game = store.get_game(game_id)
    if game is None:
        return []
    by_question: Dict[int, List[Dict[str, Any]]] = defaultdict(list)
    for a in store.answers_for_game(game_id):
        by_question[a['question_id']].append(a)
    stats = []
    for q in store.list_questions(game.quiz_set_id):
        rows = by_question.get(q.id, [])
        total = len(rows)
        right = sum(1 for a in rows if a.get('is_correct'))
        stats.append({
            'question_id': q.id,
            'order': q.order,
            'body': q.body,
            'total_answers': total,
            'correct_answers': right,
            'correct_percentage': round(100.0 * right / total) if total else 0,
        })
    return stats


EXPORT_COLUMNS = ('rank', 'nickname', 'correct', 'total_score')


def export_rows(standings: Sequence[Standing], total_questions: int) -> List[Dict[str, Any]]:
    return [
        {
            'rank': s.rank,
            'nickname': s.nickname,
            'correct': f"{s.correct_count}/{total_questions}",
            'total_score': s.total_score,
        }
        for s in standings
    ]


def export_csv(rows: Sequence[Dict[str, Any]], delimiter: str = ',') -> str:
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=EXPORT_COLUMNS, delimiter=delimiter, lineterminator='\n')
    writer.writeheader()
    for row in rows:
        writer.writerow({k: row[k] for k in EXPORT_COLUMNS})
    return buf.getvalue()
