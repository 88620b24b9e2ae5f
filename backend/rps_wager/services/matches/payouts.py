import time
import logging
from datetime import datetime, timezone
from typing import List, Set

from rps_wager import db, socketio
from rps_wager.models import FundMovement, Match
from .engine import locked_match
from .ledger import LedgerConflict, LedgerError, ledger_for

logger = logging.getLogger(__name__)

_scheduled_retry_keys: Set[int] = set()


def settlement_state(match: Match) -> str:
    """unsettled | pending | partial | failed | paid"""
    if match.status != 'ended':
        return 'unsettled'
    statuses = [m.status for m in match.movements]
    if all(s == 'completed' for s in statuses):
        return 'paid'
    if 'failed' in statuses:
        return 'failed'
    if 'completed' in statuses:
        return 'partial'
    return 'pending'


def dispatch_movements(match: Match, ledger) -> List[FundMovement]:
    """Push every not-yet-completed movement of an ended match to the ledger.

    Each movement is re-read under a row lock and committed on its own, so a
    failure part way leaves the completed ones durable and the rest
    retryable. A movement another worker completed in the meantime is seen
    as completed here and never sent twice. Returns the movements that failed
    on this pass.
    """
    if match.status != 'ended':
        return []
    failed = []
    code = match.code
    for movement_id in [m.id for m in match.movements]:
        movement = (
            db.session.query(FundMovement)
            .filter_by(id=movement_id)
            .populate_existing()
            .with_for_update()
            .one()
        )
        if movement.status == 'completed':
            continue
        attempts = (movement.attempts or 0) + 1
        try:
            ledger.transfer(movement.source, movement.destination, movement.amount)
        except LedgerConflict as exc:
            # the ledger already rolled the unit back; leave the row for the next pass
            failed.append(movement)
            logger.warning(f"[payout-conflict] match={code} kind={movement.kind} error={exc}")
            continue
        except LedgerError as exc:
            movement.status = 'failed'
            movement.last_error = f"{type(exc).__name__}: {exc}"
            failed.append(movement)
            logger.warning(
                f"[payout-fail] match={code} kind={movement.kind} to={movement.destination} "
                f"amount={movement.amount} attempt={attempts} error={movement.last_error}"
            )
        else:
            movement.status = 'completed'
            movement.last_error = None
            movement.completed_at = datetime.now(timezone.utc)
            logger.info(
                f"[payout-ok] match={code} kind={movement.kind} to={movement.destination} amount={movement.amount}"
            )
        movement.attempts = attempts
        db.session.add(movement)
        db.session.commit()
    return failed


def schedule_payout_retry(app, match_id: int) -> None:
    """Retry failed movements of a match in the background.

    - No-ops in TESTING mode unless ENABLE_SCHEDULER_IN_TESTS is set
    - Ensures a single pending retry per match
    - Gives up once any movement reaches PAYOUT_MAX_ATTEMPTS
    """
    if app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS'):
        return
    if match_id in _scheduled_retry_keys:
        app.logger.info(f"[payout-retry-skip] match_id={match_id} already scheduled")
        return
    _scheduled_retry_keys.add(match_id)
    delay = int(app.config.get('PAYOUT_RETRY_DELAY_SEC', 5))
    max_attempts = int(app.config.get('PAYOUT_MAX_ATTEMPTS', 3))

    def _worker(mid: int, wait: int):
        time.sleep(wait)
        with app.app_context():
            _scheduled_retry_keys.discard(mid)
            match = db.session.get(Match, mid)
            if match is None:
                return
            with locked_match(match.code) as locked:
                pending = [m for m in locked.movements if m.status != 'completed']
                if not pending:
                    return
                if max(m.attempts or 0 for m in pending) >= max_attempts:
                    app.logger.error(f"[payout-retry-exhausted] match={locked.code} attempts={max_attempts}")
                    return
                app.logger.info(f"[payout-retry] match={locked.code} pending={len(pending)}")
                failed = dispatch_movements(locked, ledger_for(app))
                code = locked.code
            socketio.emit('match_update', {'code': code, 'status': 'ended'}, to=f"match:{code}", namespace='/ws')
            if failed:
                schedule_payout_retry(app, mid)

    if app.config.get('TESTING'):
        _worker(match_id, delay)
    else:
        socketio.start_background_task(_worker, match_id, delay)
