"""
Tests for knockout round progression.
"""
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from engine.advancement import RoundAdvancer, find_advanceable_round, group_knockout_rounds, pair_winners
from engine.errors import (
    BracketIntegrityError, InsufficientWinners, NoAdvanceableRound, NotFoundError, RoundAlreadyExists,
    StateError,
)
from engine.models import Match, MatchStatus, RoundType, Team, TournamentStatus
from engine.seeding import BracketSeeder


@pytest.fixture
def published(store, make_tournament, add_pairs):
    """Factory: a published knockout draw of `count` pairs."""
    def _published(count, **overrides):
        tournament = make_tournament(status=TournamentStatus.DRAW_PUBLISHED, **overrides)
        pairs = add_pairs(tournament, count)
        matches = BracketSeeder(store).seed(tournament, pairs)
        return tournament, pairs, matches
    return _published


def play_round(recorder, win, matches):
    for match in matches:
        if not match.is_bye:
            win(recorder, match, side=1)


def decided(tournament_id, round_type, match_order, winner):
    return Match(tournament_id, round_type, match_order, Team(winner), Team(f'{winner}-opp'),
                 status=MatchStatus.COMPLETED, winner_registration_id=winner)


class TestHelpers:
    def test_pair_winners_even(self):
        assert pair_winners(['a', 'b', 'c', 'd']) == [('a', 'b'), ('c', 'd')]

    def test_pair_winners_odd_last_gets_bye(self):
        assert pair_winners(['a', 'b', 'c']) == [('a', 'b'), ('c', None)]

    def test_pool_matches_are_not_knockout_rounds(self):
        pool_match = Match('t1', RoundType.POOL, 1, Team('a'), Team('b'), pool_id='p1')
        assert group_knockout_rounds([pool_match]) == {}

    def test_round_with_successor_is_not_advanceable(self):
        rounds = group_knockout_rounds([
            decided('t1', RoundType.SEMIS, 1, 'a'),
            decided('t1', RoundType.SEMIS, 2, 'b'),
            Match('t1', RoundType.FINAL, 1, Team('a'), Team('b')),
        ])
        assert find_advanceable_round(rounds) is None


class TestRoundAdvancer:
    """Tests for next round generation."""

    def test_even_winners_halved(self, store, recorder, win, published):
        tournament, pairs, matches = published(8)
        play_round(recorder, win, matches)

        new_matches = RoundAdvancer(store).advance(tournament.id)

        assert len(new_matches) == 2
        assert {m.round_type for m in new_matches} == {RoundType.SEMIS}
        teams = [rid for m in new_matches for rid in m.team_ids]
        assert len(set(teams)) == 4
        winners = {m.team1.registration_id for m in matches}
        assert set(teams) == winners

    def test_winners_paired_in_match_order(self, store, recorder, win, published):
        tournament, pairs, matches = published(8)
        play_round(recorder, win, matches)
        semis = RoundAdvancer(store).advance(tournament.id)
        assert [m.team_ids for m in semis] == [
            [matches[0].team1.registration_id, matches[1].team1.registration_id],
            [matches[2].team1.registration_id, matches[3].team1.registration_id],
        ]

    def test_odd_winners_get_one_bye(self, store, recorder, win, published):
        tournament, pairs, matches = published(6)
        play_round(recorder, win, matches)

        new_matches = RoundAdvancer(store).advance(tournament.id)

        byes = [m for m in new_matches if m.is_bye]
        assert len(new_matches) == 2
        assert len(byes) == 1
        assert byes[0].status == MatchStatus.COMPLETED
        assert byes[0].winner_registration_id == matches[2].team1.registration_id

    def test_advance_twice_fails(self, store, recorder, win, published):
        tournament, pairs, matches = published(4)
        play_round(recorder, win, matches)
        advancer = RoundAdvancer(store)
        advancer.advance(tournament.id)
        with pytest.raises(NoAdvanceableRound):
            advancer.advance(tournament.id)
        assert len([m for m in store.matches.list(tournament.id) if m.round_type == RoundType.FINAL]) == 1

    def test_unfinished_round_not_advanced(self, store, recorder, win, published):
        tournament, pairs, matches = published(4)
        win(recorder, matches[0])
        with pytest.raises(NoAdvanceableRound):
            RoundAdvancer(store).advance(tournament.id)

    def test_no_knockout_matches(self, store, make_tournament):
        tournament = make_tournament(status=TournamentStatus.IN_PROGRESS)
        with pytest.raises(NotFoundError):
            RoundAdvancer(store).advance(tournament.id)

    def test_missing_tournament(self, store):
        with pytest.raises(NotFoundError):
            RoundAdvancer(store).advance('nope')

    def test_five_pairs_to_final(self, store, recorder, win, published):
        """2 matches + 1 bye, then 1 match + 1 bye, then the final."""
        tournament, pairs, matches = published(5)
        assert [m.is_bye for m in matches] == [False, False, True]
        assert matches[0].round_type == RoundType.QUARTERS
        play_round(recorder, win, matches)

        advancer = RoundAdvancer(store)
        semis = advancer.advance(tournament.id)
        assert [m.round_type for m in semis] == [RoundType.SEMIS] * 2
        assert [m.is_bye for m in semis] == [False, True]
        assert semis[1].winner_registration_id == pairs[0].id
        play_round(recorder, win, semis)

        final = advancer.advance(tournament.id)
        assert len(final) == 1
        assert final[0].round_type == RoundType.FINAL
        assert pairs[0].id in final[0].team_ids

        win(recorder, final[0])
        assert store.tournaments.get(tournament.id).status == TournamentStatus.COMPLETED
        with pytest.raises(StateError):
            advancer.advance(tournament.id)

    @pytest.mark.parametrize('status', [TournamentStatus.CANCELLED, TournamentStatus.COMPLETED,
                                        TournamentStatus.REGISTRATION_CLOSED])
    def test_not_advanced_outside_play(self, store, recorder, win, published, status):
        """A decided round stays the last one once the tournament stops being played."""
        tournament, pairs, matches = published(4)
        play_round(recorder, win, matches)
        tournament = store.tournaments.get(tournament.id)
        tournament.status = status
        store.tournaments.save(tournament)

        with pytest.raises(StateError):
            RoundAdvancer(store).advance(tournament.id)
        assert not [m for m in store.matches.list(tournament.id) if m.round_type == RoundType.FINAL]

    def test_third_place_match_created_with_final(self, store, recorder, win, published):
        tournament, pairs, matches = published(4, third_place_match=True)
        play_round(recorder, win, matches)

        new_matches = RoundAdvancer(store).advance(tournament.id)

        third = [m for m in new_matches if m.round_type == RoundType.THIRD_PLACE]
        assert len(third) == 1
        assert set(third[0].team_ids) == {m.team2.registration_id for m in matches}

        final = next(m for m in new_matches if m.round_type == RoundType.FINAL)
        win(recorder, final)
        assert store.tournaments.get(tournament.id).status == TournamentStatus.IN_PROGRESS
        win(recorder, third[0])
        assert store.tournaments.get(tournament.id).status == TournamentStatus.COMPLETED

    def test_final_needs_exactly_two_winners(self, store, make_tournament):
        tournament = make_tournament(status=TournamentStatus.IN_PROGRESS)
        store.matches.insert_round(tournament.id, [
            decided(tournament.id, RoundType.SEMIS, i, f'w{i}') for i in range(1, 4)
        ])
        with pytest.raises(BracketIntegrityError):
            RoundAdvancer(store).advance(tournament.id)

    def test_single_winner_cannot_advance(self, store, make_tournament):
        tournament = make_tournament(status=TournamentStatus.IN_PROGRESS)
        store.matches.insert_round(tournament.id, [Match.bye(tournament.id, RoundType.SEMIS, 1, 'w1')])
        with pytest.raises(InsufficientWinners):
            RoundAdvancer(store).advance(tournament.id)

    def test_lost_race_reports_no_advanceable_round(self, store, recorder, win, published, monkeypatch):
        """A concurrent writer landing the same round first is not an error twice over."""
        tournament, pairs, matches = published(4)
        play_round(recorder, win, matches)
        original_insert = store.matches.insert_round

        def racing_insert(tournament_id, new_matches):
            original_insert(tournament_id, [Match(tournament_id, RoundType.FINAL, 1,
                                                  Team('x'), Team('y'))])
            original_insert(tournament_id, new_matches)

        monkeypatch.setattr(store.matches, 'insert_round', racing_insert)
        with pytest.raises(NoAdvanceableRound):
            RoundAdvancer(store).advance(tournament.id)
        finals = [m for m in store.matches.list(tournament.id) if m.round_type == RoundType.FINAL]
        assert len(finals) == 1

    def test_store_refuses_duplicate_round(self, store, make_tournament):
        tournament = make_tournament()
        store.matches.insert_round(tournament.id, [decided(tournament.id, RoundType.FINAL, 1, 'a')])
        with pytest.raises(RoundAlreadyExists):
            store.matches.insert_round(tournament.id, [decided(tournament.id, RoundType.FINAL, 1, 'b')])
