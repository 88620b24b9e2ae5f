"""Match errors. Each carries a stable wire ``code`` and an HTTP status."""


class MatchError(Exception):
    code = 'match_error'
    http_status = 400

    def __init__(self, message=None):
        super().__init__(message or self.code)
        self.message = message or self.code


class GameNotOpen(MatchError):
    code = 'game_not_open'
    http_status = 409


class InvalidGameStatus(MatchError):
    code = 'invalid_game_status'
    http_status = 409


class InvalidReveal(MatchError):
    code = 'invalid_reveal'
    http_status = 403


class Unauthorized(MatchError):
    code = 'unauthorized'
    http_status = 403


class NumericalOverflow(MatchError):
    code = 'numerical_overflow'
    http_status = 422


class InvalidWager(MatchError):
    code = 'invalid_wager'
    http_status = 400


class InvalidCommitment(MatchError):
    code = 'invalid_commitment'
    http_status = 400


class MatchNotFound(MatchError):
    code = 'match_not_found'
    http_status = 404
