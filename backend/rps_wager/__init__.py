from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
bcrypt = Bcrypt()
login_manager = LoginManager()
migrate = Migrate()
allowed_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from rps_wager.services.matches.ledger import SqlLedger
    flask_app.extensions.setdefault('rps_ledger_factory', SqlLedger)

    from rps_wager.main import main
    flask_app.register_blueprint(main)

    from rps_wager.api.matches import matches
    flask_app.register_blueprint(matches, url_prefix='/api/matches')

    from rps_wager.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    from rps_wager.models import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'unauthenticated', 'message': 'Login required'}), 401

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            ledger = SqlLedger(house_account=flask_app.config['HOUSE_ACCOUNT'])
            ledger.account(flask_app.config['HOUSE_ACCOUNT'], kind='house')
            # Seed users with a playable balance
            users = ['testuser1', 'testuser2', 'testuser3']
            for u in users:
                user = User(username=u)
                user.set_password('password')
                db.session.add(user)
                ledger.credit(user.identity, flask_app.config['STARTING_BALANCE'])

            db.session.commit()
            print('Database has been reset and seeded!')

    @click.command('ledger-credit')
    @click.argument('username')
    @click.argument('amount', type=int)
    def ledger_credit_command(username, amount):
        """Credits AMOUNT units to USERNAME's ledger account."""
        with flask_app.app_context():
            user = User.query.filter_by(username=username).first()
            if user is None:
                raise click.ClickException(f'No such user: {username}')
            acct = SqlLedger(house_account=flask_app.config['HOUSE_ACCOUNT']).credit(user.identity, amount)
            db.session.commit()
            print(f'{username} balance: {acct.balance}')

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(ledger_credit_command)

    return flask_app
