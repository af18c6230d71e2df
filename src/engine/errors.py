"""
Error taxonomy for the bracket engine.

Every error carries the HTTP status the API answers with and a stable code
the admin UI can switch on. Messages are safe to show to a club admin.
"""


class EngineError(Exception):
    status_code = 500
    code = 'engine_error'

    def __init__(self, message: str = None):
        super().__init__(message or self.default_message())

    @classmethod
    def default_message(cls) -> str:
        return cls.__doc__.strip() if cls.__doc__ else cls.code


class ValidationError(EngineError):
    """The request payload is malformed."""
    status_code = 400
    code = 'validation_error'


class InvalidScore(ValidationError):
    """The score does not satisfy the match format."""
    code = 'invalid_score'


class AuthorizationError(EngineError):
    """You are not allowed to perform this action."""
    status_code = 403
    code = 'forbidden'


class NotFoundError(EngineError):
    """Resource not found."""
    status_code = 404
    code = 'not_found'


class PersistenceError(EngineError):
    """The tournament store could not be written."""
    status_code = 500
    code = 'persistence_error'


class StateError(EngineError):
    """The tournament is not in a state that allows this action."""
    status_code = 400
    code = 'state_error'


class NoAdvanceableRound(StateError):
    """No next round can be generated. Check that every match of the current round is finished and that the next round does not exist yet."""
    code = 'no_advanceable_round'


class InsufficientWinners(StateError):
    """Not enough winners to generate a next round."""
    code = 'insufficient_winners'


class InsufficientRegistrations(StateError):
    """At least two confirmed registrations are required."""
    code = 'insufficient_registrations'


class MatchAlreadyDecided(StateError):
    """This match already has a winner."""
    code = 'match_already_decided'


class DrawAlreadyGenerated(StateError):
    """The draw has already been generated for this tournament."""
    code = 'draw_already_generated'


class PoolsNotCompleted(StateError):
    """Every pool must be completed before the final draw."""
    code = 'pools_not_completed'


class BracketIntegrityError(StateError):
    """The bracket is inconsistent and cannot be advanced."""
    code = 'bracket_integrity_error'


class InvalidTransition(StateError):
    """This status change is not allowed."""
    code = 'invalid_transition'


class RoundAlreadyExists(Exception):
    """Raised by stores when a conditional round insert finds the round present."""

    def __init__(self, tournament_id: str, round_type):
        super().__init__(f'{round_type} already exists for tournament {tournament_id}')
        self.tournament_id = tournament_id
        self.round_type = round_type
