from rps_wager import db, bcrypt
from flask_login import UserMixin
from sqlalchemy.types import String, TypeDecorator
from datetime import datetime, timezone
import string
import random

from rps_wager.services.matches.rules import ZERO_COMMITMENT, U64_MAX


class Amount(TypeDecorator):
    """Unsigned 64-bit amount stored as decimal text so no backend truncates it."""
    impl = String(20)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = int(value)
        if value < 0 or value > U64_MAX:
            raise ValueError(f'amount {value} does not fit in u64')
        return str(value)

    def process_result_value(self, value, dialect):
        return int(value) if value is not None else None


def _utcnow():
    return datetime.now(timezone.utc)


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)

    @property
    def identity(self):
        return self.username

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
        }


class LedgerAccount(db.Model):
    __tablename__ = 'ledger_account'
    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(128), unique=True, nullable=False, index=True)
    kind = db.Column(db.String(16), nullable=False, default='user')  # user, escrow, house
    balance = db.Column(Amount, nullable=False, default=0)
    version = db.Column(db.Integer, nullable=False)

    __mapper_args__ = {'version_id_col': version}


def generate_match_code(length=6):
    """Generate a unique, short match code."""
    while True:
        code = ''.join(random.choices(string.ascii_uppercase + string.digits, k=length))
        if not Match.query.filter_by(code=code).first():
            return code


class Match(db.Model):
    __tablename__ = 'match'
    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(8), unique=True, nullable=False, index=True)
    creator_id = db.Column(db.String(64), nullable=False, index=True)
    opponent_id = db.Column(db.String(64), nullable=True, index=True)
    creator_commitment = db.Column(db.LargeBinary(32), nullable=False)
    opponent_commitment = db.Column(db.LargeBinary(32), nullable=False, default=ZERO_COMMITMENT)
    creator_reveal = db.Column(db.Integer, nullable=True)
    opponent_reveal = db.Column(db.Integer, nullable=True)
    wager = db.Column(Amount, nullable=False)
    status = db.Column(db.String(16), nullable=False, default='open')  # open, committed, ended
    escrow_handle = db.Column(db.String(64), nullable=False)
    # Settlement results, set once when the match ends
    outcome = db.Column(db.String(16), nullable=True)
    house_fee = db.Column(Amount, nullable=True)
    payout = db.Column(Amount, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    ended_at = db.Column(db.DateTime(timezone=True), nullable=True)
    movements = db.relationship(
        'FundMovement', back_populates='match', order_by='FundMovement.id', cascade='all, delete-orphan'
    )

    def __init__(self, **kwargs):
        super(Match, self).__init__(**kwargs)
        if not self.code:
            self.code = generate_match_code()

    def to_dict(self):
        from rps_wager.services.matches.payouts import settlement_state

        payload = {
            'id': self.id,
            'code': self.code,
            'status': self.status,
            'creator_id': self.creator_id,
            'opponent_id': self.opponent_id,
            'creator_commitment': self.creator_commitment.hex() if self.creator_commitment else None,
            'opponent_commitment': (
                self.opponent_commitment.hex()
                if self.opponent_commitment and self.opponent_commitment != ZERO_COMMITMENT
                else None
            ),
            'creator_revealed': self.creator_reveal is not None,
            'opponent_revealed': self.opponent_reveal is not None,
            'wager': self.wager,
            'escrow_handle': self.escrow_handle,
            'outcome': self.outcome,
            'house_fee': self.house_fee,
            'payout': self.payout,
            'settlement_state': settlement_state(self),
        }
        # Moves are only disclosed once the outcome is decided
        if self.status == 'ended':
            payload['creator_move'] = self.creator_reveal
            payload['opponent_move'] = self.opponent_reveal
        payload['movements'] = [m.to_dict() for m in self.movements]
        return payload


class FundMovement(db.Model):
    __tablename__ = 'fund_movement'
    __table_args__ = (db.UniqueConstraint('match_id', 'kind', name='uq_fund_movement_match_kind'),)
    id = db.Column(db.Integer, primary_key=True)
    match_id = db.Column(db.Integer, db.ForeignKey('match.id'), nullable=False, index=True)
    kind = db.Column(db.String(32), nullable=False)  # house_fee, creator_payout, opponent_payout, tie_dust
    source = db.Column(db.String(64), nullable=False)
    destination = db.Column(db.String(128), nullable=False)
    amount = db.Column(Amount, nullable=False)
    status = db.Column(db.String(16), nullable=False, default='pending')  # pending, completed, failed
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version = db.Column(db.Integer, nullable=False)
    match = db.relationship('Match', back_populates='movements')

    __mapper_args__ = {'version_id_col': version}

    def to_dict(self):
        return {
            'id': self.id,
            'kind': self.kind,
            'destination': self.destination,
            'amount': self.amount,
            'status': self.status,
            'attempts': self.attempts,
            'last_error': self.last_error,
        }
