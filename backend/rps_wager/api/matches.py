from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user
from rps_wager import db
from rps_wager.models import Match
from rps_wager.services.matches.engine import create_match, join_match, locked_match, reveal_move
from rps_wager.services.matches.errors import MatchError, MatchNotFound
from rps_wager.services.matches.ledger import LedgerError, ledger_for
from rps_wager.services.matches.payouts import dispatch_movements, schedule_payout_retry, settlement_state
from rps_wager.services.matches.rules import compute_commitment, parse_move
from rps_wager.socketio_events import emit_match_update


matches = Blueprint('matches', __name__)


@matches.errorhandler(MatchError)
@matches.errorhandler(LedgerError)
def _handle_match_error(exc):
    current_app.logger.info(f"[match-reject] path={request.path} error={exc.code} message={exc.message}")
    return jsonify({'error': exc.code, 'message': exc.message}), exc.http_status


def _settings():
    cfg = current_app.config
    return {
        'house': cfg.get('HOUSE_ACCOUNT', 'house'),
        'dust_policy': cfg.get('TIE_DUST_POLICY', 'house'),
    }


def _pay_out(match: Match) -> None:
    """Dispatch the movements recorded at settlement and schedule a retry if any failed."""
    with locked_match(match.code) as locked:
        failed = dispatch_movements(locked, ledger_for(current_app))
        match_id = locked.id
    if failed:
        schedule_payout_retry(current_app._get_current_object(), match_id)


@matches.route('/create', methods=['POST'])
@login_required
def create_game():
    data = request.get_json(silent=True) or {}
    try:
        match = create_match(
            ledger_for(current_app),
            current_user.identity,
            data.get('commitment'),
            data.get('wager'),
            require_nonzero=current_app.config.get('REQUIRE_NONZERO_WAGER', False),
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    emit_match_update(match)
    return jsonify({'code': match.code, 'match': match.to_dict()}), 201


@matches.route('/<string:code>/join', methods=['POST'])
@login_required
def join_game(code):
    data = request.get_json(silent=True) or {}
    with locked_match(code) as match:
        join_match(match, ledger_for(current_app), current_user.identity, data.get('commitment'))
    emit_match_update(match)
    return jsonify(match.to_dict())


@matches.route('/<string:code>/reveal', methods=['POST'])
@login_required
def reveal(code):
    data = request.get_json(silent=True) or {}
    with locked_match(code) as match:
        settlement = reveal_move(
            match,
            current_user.identity,
            data.get('move'),
            data.get('salt'),
            **_settings(),
        )
    if settlement is not None:
        _pay_out(match)
    emit_match_update(match)
    return jsonify(match.to_dict())


@matches.route('/<string:code>', methods=['GET'])
def get_match(code):
    match = Match.query.filter_by(code=code.upper()).first()
    if match is None:
        raise MatchNotFound(f'no match {code}')
    return jsonify(match.to_dict())


@matches.route('/<string:code>/payouts/retry', methods=['POST'])
@login_required
def retry_payouts(code):
    match = Match.query.filter_by(code=code.upper()).first()
    if match is None:
        raise MatchNotFound(f'no match {code}')
    if settlement_state(match) in ('unsettled', 'paid'):
        return jsonify(match.to_dict())
    current_app.logger.info(f"[payout-retry] match={match.code} requested_by={current_user.identity}")
    _pay_out(match)
    emit_match_update(match)
    return jsonify(match.to_dict())


@matches.route('/commitment', methods=['GET'])
def commitment_helper():
    """Digest a client would submit for ``move`` and ``salt``. Only for local tooling and tests."""
    move = parse_move(request.args.get('move', type=int))
    salt = request.args.get('salt', '')
    return jsonify({'move': int(move), 'commitment': compute_commitment(move, salt).hex()})
