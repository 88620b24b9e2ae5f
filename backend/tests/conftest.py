import os
import sys
import pytest

# Ensure the backend root (containing the `rps_wager` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from rps_wager import create_app, db, socketio
from rps_wager.services.matches.rules import compute_commitment


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_ENABLED = False
    BCRYPT_LOG_ROUNDS = 4
    HOUSE_ACCOUNT = 'house'
    REQUIRE_NONZERO_WAGER = False
    TIE_DUST_POLICY = 'house'
    PAYOUT_RETRY_DELAY_SEC = 0
    PAYOUT_MAX_ATTEMPTS = 3
    STARTING_BALANCE = 10000


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    # Requests push their own app context; holding one open here would leak
    # the logged-in user (cached on `g`) from one test client to the next.
    with application.app_context():
        # Ensure models are imported so tables are created
        import rps_wager.models  # noqa: F401
        db.create_all()
    yield application
    with application.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def app_ctx(flask_app):
    """An app context for tests that drive the services directly, without HTTP."""
    with flask_app.app_context():
        yield flask_app
        db.session.remove()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def ledger(app_ctx):
    from rps_wager.services.matches.ledger import SqlLedger
    return SqlLedger(house_account='house')


@pytest.fixture()
def balance_of(flask_app):
    """Read a ledger balance from outside any request."""
    from rps_wager.services.matches.ledger import SqlLedger

    def _balance(key):
        with flask_app.app_context():
            return SqlLedger().balance(key)

    return _balance


@pytest.fixture()
def make_player(flask_app):
    """Register a user with a funded ledger account and return a logged-in client."""
    from rps_wager.models import User
    from rps_wager.services.matches.ledger import SqlLedger

    def _make(username, balance=10000):
        with flask_app.app_context():
            user = User(username=username)
            user.set_password('password')
            db.session.add(user)
            if balance:
                SqlLedger().credit(user.identity, balance)
            db.session.commit()
        player_client = flask_app.test_client()
        res = player_client.post('/login', json={'username': username, 'password': 'password'})
        assert res.status_code == 200
        return player_client

    return _make


@pytest.fixture()
def commit():
    """Hex commitment for a (move, salt) pair."""
    def _commit(move, salt):
        return compute_commitment(move, salt).hex()
    return _commit


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    if test_client.is_connected('/ws'):
        test_client.disconnect(namespace='/ws')


@pytest.fixture()
def file_app(tmp_path):
    """App on a file-backed SQLite database, so threads get their own connections."""
    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'matches.db'}"

    application = create_app(FileConfig)
    with application.app_context():
        db.create_all()
    yield application
    with application.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()
