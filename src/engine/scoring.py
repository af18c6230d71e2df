"""
Padel match formats and score validation.

Format codes follow the federation letters: A (best of three sets), B and C
(two short sets plus a super tie-break at one set all), D (one long set),
E (a lone super tie-break) and F (one set to four). A trailing 2 means the
format is played with punto de oro (no advantage at deuce).
"""
from typing import Dict, Optional, Tuple

from engine.errors import InvalidScore, ValidationError
from engine.models import MatchScore, SetScore

TIEBREAK_POINTS = 7
SUPER_TIEBREAK_POINTS = 10


class MatchFormat:
    def __init__(self, code: str, num_sets: int, games: int, tiebreak_at: int,
                 decider: Optional[str] = None, punto_de_oro: bool = False):
        """
        Args:
            num_sets: sets played before any decider (0 for a lone super tie-break).
            games: games needed to win a set.
            tiebreak_at: games all score at which the set goes to a tie-break.
            decider: how a one-set-all match is settled: 'third_set_or_super',
                'super', or None when the format has a single set.
        """
        self.code = code
        self.num_sets = num_sets
        self.games = games
        self.tiebreak_at = tiebreak_at
        self.decider = decider
        self.punto_de_oro = punto_de_oro

    def __repr__(self):
        return f"MatchFormat({self.code})"


def _family(letter: str, **rules) -> Dict[str, MatchFormat]:
    return {
        f'{letter}1': MatchFormat(f'{letter}1', **rules),
        f'{letter}2': MatchFormat(f'{letter}2', punto_de_oro=True, **rules),
    }


FORMATS: Dict[str, MatchFormat] = {}
FORMATS.update(_family('A', num_sets=2, games=6, tiebreak_at=6, decider='third_set_or_super'))
FORMATS.update(_family('B', num_sets=2, games=6, tiebreak_at=6, decider='super'))
FORMATS.update(_family('C', num_sets=2, games=4, tiebreak_at=4, decider='super'))
FORMATS.update(_family('D', num_sets=1, games=9, tiebreak_at=8))
FORMATS['E'] = MatchFormat('E', num_sets=0, games=0, tiebreak_at=0, decider='super')
FORMATS['F'] = MatchFormat('F', num_sets=1, games=4, tiebreak_at=3, punto_de_oro=True)


def get_format(code: str) -> MatchFormat:
    try:
        return FORMATS[code]
    except KeyError:
        raise ValidationError(f'Unknown match format: {code}')


def _non_negative_int(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f'{field} must be a non-negative integer')
    return value


def _pair(data, field: str) -> Tuple[int, int]:
    if not isinstance(data, dict):
        raise ValidationError(f'{field} must be an object with team1 and team2')
    return (_non_negative_int(data.get('team1'), f'{field}.team1'),
            _non_negative_int(data.get('team2'), f'{field}.team2'))


def parse_score(data: dict) -> MatchScore:
    """Build a MatchScore from a request payload, checking only its shape."""
    if not isinstance(data, dict):
        raise ValidationError('score must be an object')
    raw_sets = data.get('sets', [])
    if not isinstance(raw_sets, list) or len(raw_sets) > 3:
        raise ValidationError('sets must be a list of at most 3 sets')
    sets = []
    for index, raw in enumerate(raw_sets, start=1):
        team1, team2 = _pair(raw, f'sets[{index}]')
        tiebreak = _pair(raw['tiebreak'], f'sets[{index}].tiebreak') if raw.get('tiebreak') else None
        sets.append(SetScore(team1, team2, tiebreak))
    super_tiebreak = _pair(data['super_tiebreak'], 'super_tiebreak') if data.get('super_tiebreak') else None
    return MatchScore(sets, super_tiebreak, bool(data.get('punto_de_oro_used', False)))


def _check_tiebreak(points: Tuple[int, int], target: int, label: str) -> int:
    """Return the side (1 or 2) that won a tie-break played to `target`, win by two."""
    high, low = max(points), min(points)
    if high < target:
        raise InvalidScore(f'The {label} must reach {target} points')
    if high - low < 2:
        raise InvalidScore(f'The {label} must be won by two points')
    if high > target and high - low != 2:
        raise InvalidScore(f'The {label} ends as soon as one side leads by two')
    return 1 if points[0] > points[1] else 2


def _check_set(game_set: SetScore, fmt: MatchFormat, number: int) -> int:
    """Return the side that won the set or raise InvalidScore."""
    g, t = fmt.games, fmt.tiebreak_at
    a, b = game_set.team1, game_set.team2
    high, low = max(a, b), min(a, b)
    side = 1 if a > b else 2
    label = f'Set {number} ({a}-{b})'
    if a == b:
        raise InvalidScore(f'{label} has no winner')
    if high == t + 1 and low == t:
        if game_set.tiebreak is None:
            raise InvalidScore(f'{label} requires a tie-break score')
        if _check_tiebreak(game_set.tiebreak, TIEBREAK_POINTS, f'tie-break of set {number}') != side:
            raise InvalidScore(f'The tie-break of set {number} must be won by the set winner')
        return side
    if game_set.tiebreak is not None:
        raise InvalidScore(f'{label} was not decided by a tie-break')
    if high == g and low <= g - 2:
        return side
    if t == g and high == g + 1 and low == g - 1:
        return side
    raise InvalidScore(f'{label} is not a valid set to {g} games')


def determine_winner(score: MatchScore, fmt: MatchFormat, punto_de_oro: bool = False) -> int:
    """
    Validate a score against a match format and return the winning side (1 or 2).

    `punto_de_oro` lets a tournament play golden point on a format that
    otherwise uses advantages.
    """
    if score.punto_de_oro_used and not (fmt.punto_de_oro or punto_de_oro):
        raise InvalidScore(f'Format {fmt.code} is not played with punto de oro')

    sets = score.sets
    if fmt.num_sets == 0:
        if sets:
            raise InvalidScore(f'Format {fmt.code} has no sets, only a super tie-break')
        if score.super_tiebreak is None:
            raise InvalidScore(f'Format {fmt.code} requires a super tie-break score')
        return _check_tiebreak(score.super_tiebreak, SUPER_TIEBREAK_POINTS, 'super tie-break')

    max_sets = fmt.num_sets + (1 if fmt.decider == 'third_set_or_super' else 0)
    if len(sets) < fmt.num_sets or len(sets) > max_sets:
        expected = f'{fmt.num_sets}' if max_sets == fmt.num_sets else f'{fmt.num_sets} or {max_sets}'
        raise InvalidScore(f'Format {fmt.code} is played over {expected} sets')

    winners = [_check_set(s, fmt, number) for number, s in enumerate(sets, start=1)]
    first_sets = winners[:fmt.num_sets]
    split = fmt.num_sets == 2 and first_sets[0] != first_sets[1]

    if not split:
        if len(sets) > fmt.num_sets or score.super_tiebreak is not None:
            raise InvalidScore('The match was already decided, no decider is played')
        return first_sets[0]

    if len(sets) == 3:
        if score.super_tiebreak is not None:
            raise InvalidScore('A match has either a third set or a super tie-break, not both')
        return winners[2]
    if score.super_tiebreak is None:
        raise InvalidScore('At one set all a super tie-break score is required')
    return _check_tiebreak(score.super_tiebreak, SUPER_TIEBREAK_POINTS, 'super tie-break')


def format_final_score(score: MatchScore) -> str:
    """Render a score as `6-4, 7-6 (7-5) [10-8]`."""
    parts = []
    for game_set in score.sets:
        text = f'{game_set.team1}-{game_set.team2}'
        if game_set.tiebreak:
            text += f' ({game_set.tiebreak[0]}-{game_set.tiebreak[1]})'
        parts.append(text)
    text = ', '.join(parts)
    if score.super_tiebreak:
        stb = f'[{score.super_tiebreak[0]}-{score.super_tiebreak[1]}]'
        text = f'{text} {stb}' if text else stb
    return text


def score_tally(score: MatchScore) -> Tuple[int, int, int, int]:
    """Sets and games won by each side: (sets1, sets2, games1, games2).

    A super tie-break counts as a set won and, like a tie-break, as one game.
    """
    sets1 = sets2 = games1 = games2 = 0
    for game_set in score.sets:
        games1 += game_set.team1
        games2 += game_set.team2
        if game_set.team1 > game_set.team2:
            sets1 += 1
        else:
            sets2 += 1
    if score.super_tiebreak:
        if score.super_tiebreak[0] > score.super_tiebreak[1]:
            sets1 += 1
            games1 += 1
        else:
            sets2 += 1
            games2 += 1
    return sets1, sets2, games1, games2
