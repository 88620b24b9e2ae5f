"""Custody ledger capability and its database-backed implementation.

The engine only ever sees the two capabilities below. ``deposit`` is used when
a player puts their wager into a match escrow; ``transfer`` moves funds out of
an escrow and is only handed to the payout dispatcher.
"""

import hashlib
import struct
from typing import Protocol

from sqlalchemy.orm.exc import StaleDataError

from rps_wager import db
from rps_wager.models import LedgerAccount
from .rules import U64_MAX


class LedgerError(Exception):
    code = 'ledger_error'
    http_status = 502

    def __init__(self, message=None):
        super().__init__(message or self.code)
        self.message = message or self.code


class InsufficientFunds(LedgerError):
    code = 'insufficient_funds'
    http_status = 402


class LedgerConflict(LedgerError):
    code = 'ledger_conflict'
    http_status = 409


class CustodyLedger(Protocol):
    def deposit(self, from_identity: str, into_escrow: str, amount: int) -> None: ...

    def transfer(self, from_escrow: str, to_identity: str, amount: int) -> None: ...


def derive_escrow_handle(creator: str, wager: int, code: str) -> str:
    """Escrow handle rebuilt from match data alone: creator, wager (u64 LE) and match code."""
    seed = b'game' + creator.encode('utf-8') + struct.pack('<Q', wager) + code.encode('utf-8')
    return hashlib.sha256(seed).hexdigest()


class SqlLedger:
    """Balances kept in ``ledger_account`` rows inside the caller's session.

    Nothing is committed here; the surrounding match transaction decides.
    Every check happens before any balance is touched, so a raised
    ``LedgerError`` leaves both sides unchanged.

    Accounts touched by a move are loaded ``FOR UPDATE`` and written through
    the row's version counter, so two sessions spending the same balance can
    never both succeed: the loser gets ``LedgerConflict`` with its unit of
    work rolled back.
    """

    def __init__(self, session=None, house_account='house'):
        self.session = session or db.session
        self.house_account = house_account

    def account(self, key, kind='user', create=True):
        acct = self.session.query(LedgerAccount).filter_by(key=key).first()
        if acct is None and create:
            acct = LedgerAccount(key=key, kind=kind, balance=0)
            self.session.add(acct)
        return acct

    def _locked_account(self, key):
        return (
            self.session.query(LedgerAccount)
            .filter_by(key=key)
            .populate_existing()
            .with_for_update()
            .first()
        )

    def balance(self, key):
        acct = self.account(key, create=False)
        return acct.balance if acct else 0

    def credit(self, key, amount, kind='user'):
        _check_amount(amount)
        acct = self.account(key, kind=kind)
        new_balance = (acct.balance or 0) + amount
        if new_balance > U64_MAX:
            raise LedgerError(f'balance of {key} would overflow')
        acct.balance = new_balance
        return acct

    def deposit(self, from_identity, into_escrow, amount):
        self._move(from_identity, into_escrow, amount, dest_kind='escrow')

    def transfer(self, from_escrow, to_identity, amount):
        _check_amount(amount)
        if amount == 0:
            return
        kind = 'house' if to_identity == self.house_account else 'user'
        source = self.account(from_escrow, create=False)
        if source is None or source.kind != 'escrow':
            raise LedgerError(f'unknown escrow {from_escrow}')
        self._move(from_escrow, to_identity, amount, dest_kind=kind)

    def _move(self, source_key, dest_key, amount, dest_kind):
        _check_amount(amount)
        if amount == 0:
            return
        source = self._locked_account(source_key)
        if source is None or source.balance < amount:
            have = source.balance if source else 0
            raise InsufficientFunds(f'{source_key} holds {have}, needs {amount}')
        dest = self._locked_account(dest_key)
        if dest is None:
            dest = LedgerAccount(key=dest_key, kind=dest_kind, balance=0)
            self.session.add(dest)
        if (dest.balance or 0) + amount > U64_MAX:
            raise LedgerError(f'balance of {dest_key} would overflow')
        source.balance = source.balance - amount
        dest.balance = (dest.balance or 0) + amount
        try:
            self.session.flush()
        except StaleDataError as exc:
            self.session.rollback()
            raise LedgerConflict(f'{source_key} changed concurrently, retry') from exc


def _check_amount(amount):
    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0 or amount > U64_MAX:
        raise LedgerError(f'invalid amount {amount!r}')


def ledger_for(app):
    """Build the ledger the app is configured with (``app.extensions['rps_ledger_factory']``)."""
    factory = app.extensions.get('rps_ledger_factory', SqlLedger)
    return factory(house_account=app.config.get('HOUSE_ACCOUNT', 'house'))
