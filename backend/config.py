import os

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///rps_wager.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # Ledger account that receives the house fee
    HOUSE_ACCOUNT = os.environ.get('HOUSE_ACCOUNT', 'house')
    # Policy: reject zero wagers when set
    REQUIRE_NONZERO_WAGER = os.environ.get('REQUIRE_NONZERO_WAGER', '0') == '1'
    # Odd unit left over after a tie split: 'house' sweeps it, 'escrow' leaves it
    TIE_DUST_POLICY = os.environ.get('TIE_DUST_POLICY', 'house')
    # Payout retry worker (seconds / attempts)
    PAYOUT_RETRY_DELAY_SEC = int(os.environ.get('PAYOUT_RETRY_DELAY_SEC', '5'))
    PAYOUT_MAX_ATTEMPTS = int(os.environ.get('PAYOUT_MAX_ATTEMPTS', '3'))
    # Balance given to seeded users by `flask db-reset`
    STARTING_BALANCE = int(os.environ.get('STARTING_BALANCE', '10000'))
