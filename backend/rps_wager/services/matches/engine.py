"""Match engine: the create -> join -> reveal -> settle state machine.

Each operation mutates exactly one Match inside the caller's session and never
commits; ``locked_match`` provides the per-match critical section and the
commit/rollback boundary.
"""

import logging
import threading
import weakref
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from rps_wager import db
from rps_wager.models import FundMovement, Match
from .errors import GameNotOpen, InvalidGameStatus, InvalidReveal, MatchNotFound, Unauthorized
from .ledger import derive_escrow_handle
from .rules import (
    Move,
    Settlement,
    ZERO_COMMITMENT,
    compute_settlement,
    decide_winner,
    parse_commitment,
    parse_move,
    preflight_wager,
    verify_commitment,
)

logger = logging.getLogger(__name__)

STATUS_OPEN = 'open'
STATUS_COMMITTED = 'committed'
STATUS_ENDED = 'ended'

# Entries disappear once no caller holds the lock
_match_locks = weakref.WeakValueDictionary()
_registry_lock = threading.Lock()


def _lock_for(code: str) -> threading.Lock:
    with _registry_lock:
        lock = _match_locks.get(code)
        if lock is None:
            lock = threading.Lock()
            _match_locks[code] = lock
        return lock


@contextmanager
def locked_match(code: str):
    """Serialize all work on one match and commit it as a single unit.

    Yields the freshly loaded Match (row-locked where the database supports
    it). Any exception rolls the whole unit back.
    """
    code = code.upper()
    with _lock_for(code):
        match = (
            db.session.query(Match)
            .filter_by(code=code)
            .populate_existing()
            .with_for_update()
            .first()
        )
        if match is None:
            db.session.rollback()
            raise MatchNotFound(f'no match {code}')
        try:
            yield match
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise


def create_match(ledger, creator: str, commitment, wager, require_nonzero: bool = False) -> Match:
    commitment = parse_commitment(commitment)
    wager = preflight_wager(wager, require_nonzero=require_nonzero)

    match = Match(
        creator_id=creator,
        opponent_id=None,
        creator_commitment=commitment,
        opponent_commitment=ZERO_COMMITMENT,
        wager=wager,
        status=STATUS_OPEN,
    )
    match.escrow_handle = derive_escrow_handle(creator, wager, match.code)
    ledger.deposit(creator, match.escrow_handle, wager)
    db.session.add(match)
    logger.info(f"[match-create] match={match.code} creator={creator} wager={wager}")
    return match


def join_match(match: Match, ledger, caller: str, commitment) -> None:
    if match.status != STATUS_OPEN:
        raise GameNotOpen(f'match {match.code} is not open')
    if caller == match.creator_id:
        raise Unauthorized('creator cannot join their own match')
    commitment = parse_commitment(commitment)

    ledger.deposit(caller, match.escrow_handle, match.wager)
    match.opponent_id = caller
    match.opponent_commitment = commitment
    match.status = STATUS_COMMITTED
    db.session.add(match)
    logger.info(f"[match-join] match={match.code} opponent={caller}")


def reveal_move(match: Match, caller: str, move, salt: str, house: str, dust_policy: str = 'house') -> Optional[Settlement]:
    """Verify and record one side's reveal.

    Returns the Settlement when this reveal completes the pair, else None.
    """
    if match.status != STATUS_COMMITTED:
        raise InvalidGameStatus(f'match {match.code} is {match.status}, not committed')

    if caller == match.creator_id:
        side, commitment, revealed = 'creator', match.creator_commitment, match.creator_reveal
    elif caller == match.opponent_id:
        side, commitment, revealed = 'opponent', match.opponent_commitment, match.opponent_reveal
    else:
        raise Unauthorized(f'{caller} is not a player in match {match.code}')

    if revealed is not None:
        raise InvalidGameStatus(f'{side} has already revealed in match {match.code}')
    move = parse_move(move)
    if not isinstance(salt, str):
        raise InvalidReveal('salt must be a string')
    if not verify_commitment(commitment, move, salt):
        raise InvalidReveal('move and salt do not match the commitment')

    if side == 'creator':
        match.creator_reveal = int(move)
    else:
        match.opponent_reveal = int(move)
    db.session.add(match)
    logger.info(f"[match-reveal] match={match.code} side={side}")

    if match.creator_reveal is not None and match.opponent_reveal is not None:
        return settle(match, house=house, dust_policy=dust_policy)
    return None


def settle(match: Match, house: str, dust_policy: str = 'house') -> Settlement:
    """Decide the outcome, record the fund movements and end the match.

    Only reachable from the reveal that completes the pair, inside the match
    lock, so it runs once. The movements are stored as pending; paying them
    out is the dispatcher's job.
    """
    if match.status != STATUS_COMMITTED:
        raise InvalidGameStatus(f'match {match.code} cannot be settled from {match.status}')

    outcome = decide_winner(Move(match.creator_reveal), Move(match.opponent_reveal))
    settlement = compute_settlement(
        match.wager,
        outcome,
        creator=match.creator_id,
        opponent=match.opponent_id,
        house=house,
        dust_policy=dust_policy,
    )
    for planned in settlement.movements:
        match.movements.append(
            FundMovement(
                kind=planned.kind,
                source=match.escrow_handle,
                destination=planned.recipient,
                amount=planned.amount,
                status='pending',
                attempts=0,
            )
        )
    match.outcome = outcome.value
    match.house_fee = settlement.house_fee
    match.payout = settlement.payout
    match.status = STATUS_ENDED
    match.ended_at = datetime.now(timezone.utc)
    db.session.add(match)
    logger.info(
        f"[match-settle] match={match.code} outcome={outcome.value} pot={settlement.total_pot} "
        f"fee={settlement.house_fee} payout={settlement.payout}"
    )
    return settlement
