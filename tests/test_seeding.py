"""
Unit tests for knockout seeding and the first round draw.
"""
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from engine.errors import DrawAlreadyGenerated, InsufficientRegistrations, ValidationError
from engine.models import DrawPolicy, MatchStatus, Phase, Registration, RoundType
from engine.seeding import (
    BracketSeeder, build_first_round, calculate_bracket_size, calculate_num_seeds,
    calculate_rounds, first_round_type, _generate_bracket_order,
)


def ids(n):
    return [f's{i}' for i in range(1, n + 1)]


class TestBracketHelpers:
    """Tests for bracket helper functions."""

    def test_calculate_bracket_size(self):
        assert calculate_bracket_size(8) == 8
        assert calculate_bracket_size(5) == 8
        assert calculate_bracket_size(9) == 16
        assert calculate_bracket_size(2) == 2
        assert calculate_bracket_size(0) == 0

    def test_calculate_rounds(self):
        assert calculate_rounds(2) == 1
        assert calculate_rounds(5) == 3
        assert calculate_rounds(8) == 3
        assert calculate_rounds(128) == 7

    def test_first_round_type(self):
        assert first_round_type(2) == RoundType.FINAL
        assert first_round_type(4) == RoundType.SEMIS
        assert first_round_type(5) == RoundType.QUARTERS
        assert first_round_type(16) == RoundType.ROUND_OF_16
        assert first_round_type(100) == RoundType.QUALIFICATIONS

    def test_calculate_num_seeds(self):
        assert calculate_num_seeds(4) == 1
        assert calculate_num_seeds(8) == 2
        assert calculate_num_seeds(16) == 4
        assert calculate_num_seeds(32) == 8

    def test_bracket_order_8(self):
        """Test bracket order for 8 teams."""
        assert _generate_bracket_order(8) == [1, 8, 4, 5, 2, 7, 3, 6]

    def test_bracket_order_16_keeps_top_seeds_apart(self):
        order = _generate_bracket_order(16)
        assert sorted(order) == list(range(1, 17))
        assert order.index(1) < 8 <= order.index(2)


class TestBuildFirstRound:
    """Tests for first round pairing."""

    def test_eight_seeds_standard_order(self):
        assert build_first_round(ids(8)) == [('s1', 's8'), ('s4', 's5'), ('s2', 's7'), ('s3', 's6')]

    def test_five_entrants_compact(self):
        """Top seed gets the one bye, listed last."""
        assert build_first_round(ids(5)) == [('s2', 's5'), ('s3', 's4'), ('s1', None)]

    def test_six_entrants_fold_pairing(self):
        assert build_first_round(ids(6)) == [('s1', 's6'), ('s2', 's5'), ('s3', 's4')]

    def test_five_entrants_padded(self):
        pairings = build_first_round(ids(5), DrawPolicy.PADDED)
        assert pairings == [('s1', None), ('s4', 's5'), ('s2', None), ('s3', None)]

    def test_every_entrant_placed_once(self):
        for n in range(2, 40):
            for policy in DrawPolicy:
                placed = [rid for pair in build_first_round(ids(n), policy) for rid in pair if rid]
                assert sorted(placed) == sorted(ids(n))

    def test_single_entrant_has_no_matches(self):
        assert build_first_round(ids(1)) == []


class TestBracketSeeder:
    """Tests for storing the first round."""

    def test_eight_pairs_seeded_draw(self, store, make_tournament, add_pairs):
        tournament = make_tournament()
        pairs = add_pairs(tournament, 8)
        matches = BracketSeeder(store).seed(tournament, pairs)

        assert [m.round_type for m in matches] == [RoundType.QUARTERS] * 4
        assert not any(m.is_bye for m in matches)
        by_id = {p.id: i + 1 for i, p in enumerate(pairs)}
        matchups = [(by_id[m.team1.registration_id], by_id[m.team2.registration_id]) for m in matches]
        assert matchups == [(1, 8), (4, 5), (2, 7), (3, 6)]
        assert [m.match_order for m in matches] == [1, 2, 3, 4]

    def test_bye_match_is_stored_completed(self, store, make_tournament, add_pairs):
        tournament = make_tournament()
        pairs = add_pairs(tournament, 5)
        matches = BracketSeeder(store).seed(tournament, pairs)

        byes = [m for m in matches if m.is_bye]
        assert len(byes) == 1
        assert byes[0].status == MatchStatus.COMPLETED
        assert byes[0].winner_registration_id == pairs[0].id
        assert byes[0].match_order == 3

    def test_seeds_and_phase_written(self, store, make_tournament, add_pairs):
        tournament = make_tournament()
        pairs = add_pairs(tournament, 8)
        BracketSeeder(store).seed(tournament, pairs)

        stored = sorted(store.registrations.list(tournament.id), key=lambda r: r.registration_order)
        assert all(r.phase == Phase.MAIN_DRAW for r in stored)
        assert [r.seed_number for r in stored[:2]] == [1, 2]
        assert all(not r.is_seed for r in stored[2:])

    def test_manual_seeds_kept(self, store, make_tournament, add_pairs):
        tournament = make_tournament()
        pairs = add_pairs(tournament, 4)
        pairs[2].is_seed, pairs[2].seed_number = True, 1
        BracketSeeder(store).seed(tournament, pairs)
        stored = store.registrations.get(tournament.id, pairs[2].id)
        assert stored.seed_number == 1
        assert store.registrations.get(tournament.id, pairs[0].id).seed_number is None

    def test_second_draw_rejected(self, store, make_tournament, add_pairs):
        tournament = make_tournament()
        pairs = add_pairs(tournament, 4)
        seeder = BracketSeeder(store)
        seeder.seed(tournament, pairs)
        with pytest.raises(DrawAlreadyGenerated):
            seeder.seed(tournament, pairs)

    def test_too_few_pairs(self, store, make_tournament, add_pairs):
        tournament = make_tournament()
        with pytest.raises(InsufficientRegistrations):
            BracketSeeder(store).seed(tournament, add_pairs(tournament, 1))

    def test_too_many_pairs(self, store, make_tournament):
        tournament = make_tournament()
        pairs = [Registration(tournament.id, f'a{i}', f'b{i}') for i in range(129)]
        with pytest.raises(ValidationError):
            BracketSeeder(store).seed(tournament, pairs)
