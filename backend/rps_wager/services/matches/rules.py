"""Pure match rules: moves, commitments, the beats relation and payout math.

Nothing in here touches the database or the ledger. All money arithmetic is
checked against unsigned 64-bit bounds and raises instead of wrapping.
"""

import enum
import hashlib
import hmac
from dataclasses import dataclass, field
from typing import List

from .errors import InvalidCommitment, InvalidReveal, InvalidWager, NumericalOverflow

U64_MAX = 2 ** 64 - 1
U128_MAX = 2 ** 128 - 1

HOUSE_FEE_NUMERATOR = 3
HOUSE_FEE_DENOMINATOR = 100

COMMITMENT_SIZE = 32
ZERO_COMMITMENT = bytes(COMMITMENT_SIZE)


class Move(enum.IntEnum):
    ROCK = 0
    PAPER = 1
    SCISSORS = 2


class Outcome(str, enum.Enum):
    CREATOR_WINS = 'creator_wins'
    JOINER_WINS = 'joiner_wins'
    TIE = 'tie'


# (winner, loser)
BEATS = {
    (Move.ROCK, Move.SCISSORS),
    (Move.PAPER, Move.ROCK),
    (Move.SCISSORS, Move.PAPER),
}


def parse_move(value) -> Move:
    """Coerce a wire value (0, 1, 2) into a Move; anything else is an invalid reveal."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidReveal('move must be an integer 0, 1 or 2')
    try:
        return Move(value)
    except ValueError:
        raise InvalidReveal(f'move {value} is not 0, 1 or 2') from None


def compute_commitment(move: int, salt: str) -> bytes:
    """SHA-256 over the single move byte followed by the raw UTF-8 salt bytes."""
    return hashlib.sha256(bytes([int(move)]) + salt.encode('utf-8')).digest()


def verify_commitment(expected: bytes, move: int, salt: str) -> bool:
    return hmac.compare_digest(expected, compute_commitment(move, salt))


def parse_commitment(value) -> bytes:
    """Accept 32 raw bytes or a 64-char hex string; reject the all-zero digest."""
    if isinstance(value, str):
        try:
            value = bytes.fromhex(value)
        except ValueError:
            raise InvalidCommitment('commitment must be hex encoded') from None
    if not isinstance(value, (bytes, bytearray)) or len(value) != COMMITMENT_SIZE:
        raise InvalidCommitment(f'commitment must be {COMMITMENT_SIZE} bytes')
    value = bytes(value)
    if value == ZERO_COMMITMENT:
        raise InvalidCommitment('commitment must not be all zero')
    return value


def decide_winner(creator: Move, joiner: Move) -> Outcome:
    if creator == joiner:
        return Outcome.TIE
    return Outcome.CREATOR_WINS if (creator, joiner) in BEATS else Outcome.JOINER_WINS


# ---- checked arithmetic ----

def _checked(value: int, limit: int, what: str) -> int:
    if value < 0 or value > limit:
        raise NumericalOverflow(f'{what} out of range')
    return value


def checked_mul(a: int, b: int, limit: int = U64_MAX) -> int:
    return _checked(a * b, limit, 'product')


def checked_sub(a: int, b: int) -> int:
    return _checked(a - b, U64_MAX, 'difference')


def total_pot(wager: int) -> int:
    return checked_mul(wager, 2)


def house_fee(pot: int) -> int:
    # Wide intermediate, then cast back down to 64 bits
    wide = checked_mul(pot, HOUSE_FEE_NUMERATOR, limit=U128_MAX)
    return _checked(wide // HOUSE_FEE_DENOMINATOR, U64_MAX, 'house fee')


@dataclass(frozen=True)
class PlannedMovement:
    kind: str
    recipient: str
    amount: int


@dataclass(frozen=True)
class Settlement:
    outcome: Outcome
    total_pot: int
    house_fee: int
    payout: int
    movements: List[PlannedMovement] = field(default_factory=list)

    @property
    def distributed(self) -> int:
        return sum(m.amount for m in self.movements)


def compute_settlement(
    wager: int,
    outcome: Outcome,
    creator: str,
    opponent: str,
    house: str,
    dust_policy: str = 'house',
) -> Settlement:
    """Work out who gets what from the escrow for a decided outcome.

    Zero-amount movements are never planned, so a zero wager settles with
    nothing to pay. On a tie each side receives ``payout // 2``; an odd
    remainder goes to the house as ``tie_dust`` when ``dust_policy`` is
    ``'house'`` and is otherwise left in escrow.
    """
    pot = total_pot(wager)
    fee = house_fee(pot)
    payout = checked_sub(pot, fee)

    movements: List[PlannedMovement] = []

    def add(kind, recipient, amount):
        if amount:
            movements.append(PlannedMovement(kind, recipient, amount))

    add('house_fee', house, fee)
    if outcome is Outcome.CREATOR_WINS:
        add('creator_payout', creator, payout)
    elif outcome is Outcome.JOINER_WINS:
        add('opponent_payout', opponent, payout)
    else:
        half = payout // 2
        add('creator_payout', creator, half)
        add('opponent_payout', opponent, half)
        if dust_policy == 'house':
            add('tie_dust', house, checked_sub(payout, half * 2))

    return Settlement(outcome=outcome, total_pot=pot, house_fee=fee, payout=payout, movements=movements)


def preflight_wager(wager, require_nonzero: bool = False) -> int:
    """Validate a wager and make sure its settlement can be represented."""
    if isinstance(wager, bool) or not isinstance(wager, int):
        raise InvalidWager('wager must be an integer')
    if wager < 0 or wager > U64_MAX:
        raise InvalidWager('wager must fit in an unsigned 64-bit integer')
    if require_nonzero and wager == 0:
        raise InvalidWager('wager must be greater than zero')
    house_fee(total_pot(wager))
    return wager


