"""
Tests for pair sign-up, admin updates and withdrawal.
"""
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from engine.errors import AuthorizationError, NotFoundError, StateError, ValidationError
from engine.models import PaymentStatus, RegistrationStatus, TournamentStatus
from engine.registrations import ranking_key


@pytest.fixture
def open_tournament(make_tournament):
    return make_tournament(status=TournamentStatus.OPEN, max_teams=4, inscription_fee=40)


class TestRegister:
    def test_caller_becomes_player1(self, registration_store, open_tournament):
        registration = registration_store.register(open_tournament.id, 'alice', 'bob', rank1=120, rank2=80)
        assert registration.player1_id == 'alice'
        assert registration.player2_id == 'bob'
        assert registration.pair_weight == 200
        assert registration.status == RegistrationStatus.PENDING
        assert registration.registration_order == 1

    def test_tournament_must_be_open(self, registration_store, make_tournament):
        tournament = make_tournament(status=TournamentStatus.DRAFT)
        with pytest.raises(StateError):
            registration_store.register(tournament.id, 'alice', 'bob')

    def test_unknown_tournament(self, registration_store):
        with pytest.raises(NotFoundError):
            registration_store.register('missing', 'alice', 'bob')

    def test_player_cannot_register_twice(self, registration_store, open_tournament):
        registration_store.register(open_tournament.id, 'alice', 'bob')
        with pytest.raises(ValidationError):
            registration_store.register(open_tournament.id, 'carol', 'bob')

    def test_withdrawn_player_can_register_again(self, registration_store, open_tournament):
        first = registration_store.register(open_tournament.id, 'alice', 'bob')
        registration_store.withdraw(open_tournament.id, first.id, 'alice')
        again = registration_store.register(open_tournament.id, 'alice', 'dave')
        assert again.status == RegistrationStatus.PENDING

    def test_pair_needs_two_players(self, registration_store, open_tournament):
        with pytest.raises(ValidationError):
            registration_store.register(open_tournament.id, 'alice', 'alice')

    def test_negative_rank_rejected(self, registration_store, open_tournament):
        with pytest.raises(ValidationError):
            registration_store.register(open_tournament.id, 'alice', 'bob', rank1=-3)

    def test_waiting_list_when_full(self, registration_store, open_tournament):
        for i in range(4):
            registration_store.register(open_tournament.id, f'a{i}', f'b{i}')
        fifth = registration_store.register(open_tournament.id, 'late', 'comer')
        assert fifth.status == RegistrationStatus.WAITING_LIST

    def test_suspended_player_rejected(self, registration_store, tracker, open_tournament):
        tracker.add_points('bob', 'forfeit_no_show', 12)
        with pytest.raises(StateError):
            registration_store.register(open_tournament.id, 'alice', 'bob')


class TestUpdate:
    def test_rank_update_recomputes_weight(self, registration_store, store, open_tournament):
        registration = registration_store.register(open_tournament.id, 'alice', 'bob', rank1=10, rank2=20)
        updated = registration_store.update(open_tournament.id, registration.id, {'rank1': 50}, 'admin', True)
        assert updated.pair_weight == 70
        assert store.registrations.get(open_tournament.id, registration.id).pair_weight == 70

    def test_pair_weight_is_read_only(self, registration_store, open_tournament):
        registration = registration_store.register(open_tournament.id, 'alice', 'bob')
        with pytest.raises(ValidationError):
            registration_store.update(open_tournament.id, registration.id, {'pair_weight': 1}, 'admin', True)

    def test_payment_stamps_amount(self, registration_store, open_tournament):
        registration = registration_store.register(open_tournament.id, 'alice', 'bob')
        updated = registration_store.update(open_tournament.id, registration.id,
                                            {'payment_status': 'paid'}, 'admin', True)
        assert updated.payment_status == PaymentStatus.PAID
        assert updated.amount_paid == 40
        assert updated.paid_at is not None

    def test_reject_with_reason(self, registration_store, open_tournament):
        registration = registration_store.register(open_tournament.id, 'alice', 'bob')
        updated = registration_store.update(open_tournament.id, registration.id,
                                            {'status': 'rejected', 'rejection_reason': 'Unpaid'},
                                            'admin', True)
        assert updated.status == RegistrationStatus.REJECTED
        assert updated.rejection_reason == 'Unpaid'

    def test_seed_number_marks_seed(self, registration_store, open_tournament):
        registration = registration_store.register(open_tournament.id, 'alice', 'bob')
        updated = registration_store.update(open_tournament.id, registration.id, {'seed_number': 2},
                                            'admin', True)
        assert updated.is_seed and updated.seed_number == 2

    def test_unknown_status_rejected(self, registration_store, open_tournament):
        registration = registration_store.register(open_tournament.id, 'alice', 'bob')
        with pytest.raises(ValidationError):
            registration_store.update(open_tournament.id, registration.id, {'status': 'maybe'}, 'admin', True)

    def test_player_may_only_withdraw(self, registration_store, open_tournament):
        registration = registration_store.register(open_tournament.id, 'alice', 'bob')
        with pytest.raises(AuthorizationError):
            registration_store.update(open_tournament.id, registration.id, {'status': 'confirmed'},
                                      'alice', False)
        withdrawn = registration_store.update(open_tournament.id, registration.id, {'status': 'withdrawn'},
                                              'alice', False)
        assert withdrawn.status == RegistrationStatus.WITHDRAWN


class TestWithdraw:
    def test_only_player1_withdraws(self, registration_store, open_tournament):
        registration = registration_store.register(open_tournament.id, 'alice', 'bob')
        with pytest.raises(AuthorizationError):
            registration_store.withdraw(open_tournament.id, registration.id, 'bob')

    def test_confirmed_registration_cannot_be_withdrawn(self, registration_store, open_tournament):
        registration = registration_store.register(open_tournament.id, 'alice', 'bob')
        registration_store.update(open_tournament.id, registration.id, {'status': 'confirmed'}, 'admin', True)
        with pytest.raises(StateError):
            registration_store.withdraw(open_tournament.id, registration.id, 'alice')

    def test_started_tournament_blocks_withdrawal(self, registration_store, store, open_tournament):
        registration = registration_store.register(open_tournament.id, 'alice', 'bob')
        open_tournament.status = TournamentStatus.IN_PROGRESS
        store.tournaments.save(open_tournament)
        with pytest.raises(StateError):
            registration_store.withdraw(open_tournament.id, registration.id, 'alice')

    def test_withdrawal_keeps_the_row(self, registration_store, open_tournament):
        registration = registration_store.register(open_tournament.id, 'alice', 'bob')
        registration_store.withdraw(open_tournament.id, registration.id, 'alice')
        rows = registration_store.list(open_tournament.id)
        assert [r.status for r in rows] == [RegistrationStatus.WITHDRAWN]


class TestRanking:
    def test_seeds_then_weight_then_order(self, registration_store, open_tournament):
        heavy = registration_store.register(open_tournament.id, 'a', 'b', rank1=500, rank2=500)
        light = registration_store.register(open_tournament.id, 'c', 'd', rank1=10, rank2=10)
        seeded = registration_store.register(open_tournament.id, 'e', 'f', rank1=900, rank2=900)
        for registration in (heavy, light, seeded):
            registration_store.update(open_tournament.id, registration.id, {'status': 'confirmed'}, 'admin', True)
        registration_store.update(open_tournament.id, seeded.id, {'seed_number': 1}, 'admin', True)

        ranked = registration_store.ranked(open_tournament.id)
        assert [r.id for r in ranked] == [seeded.id, light.id, heavy.id]

    def test_ranking_key_falls_back_to_sign_up_order(self, registration_store, open_tournament):
        first = registration_store.register(open_tournament.id, 'a', 'b', rank1=5, rank2=5)
        second = registration_store.register(open_tournament.id, 'c', 'd', rank1=5, rank2=5)
        assert sorted([second, first], key=ranking_key) == [first, second]
