from flask import Flask, jsonify, request
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
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    flask_app.logger.setLevel(flask_app.config.get('LOG_LEVEL', 'INFO'))

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # One change feed per application; components receive it explicitly
    from quizlive.services.feed import ChangeFeed
    feed = ChangeFeed()
    flask_app.extensions['change_feed'] = feed

    from quizlive.main import main
    flask_app.register_blueprint(main, url_prefix='/api')

    from quizlive.api.games import games
    flask_app.register_blueprint(games, url_prefix='/api/games')

    from quizlive.api.quizzes import quizzes
    flask_app.register_blueprint(quizzes, url_prefix='/api/quizzes')

    from quizlive.socketio_events import register_socketio_handlers, register_feed_bridge
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))
    register_feed_bridge(feed)

    from quizlive.services.errors import StoreUnavailable

    @flask_app.errorhandler(StoreUnavailable)
    def handle_store_unavailable(exc):
        flask_app.logger.warning(f"[store-unavailable] {request.method} {request.path}: {exc}")
        return jsonify({'error': 'The game store is temporarily unavailable, please retry'}), 503

    from quizlive.models import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        from quizlive.models import User, QuizSet, Question, Choice
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            host = User(username='host')
            host.set_password('password')
            db.session.add(host)
            db.session.flush()

            quiz = QuizSet(name='Warm-up', owner_id=host.id)
            db.session.add(quiz)
            db.session.flush()
            samples = [
                ('Which planet is known as the Red Planet?', ['Venus', 'Mars', 'Jupiter', 'Mercury'], 1),
                ('What is 7 x 8?', ['54', '56', '64', '58'], 1),
                ('Which ocean is the largest?', ['Pacific', 'Atlantic', 'Indian', 'Arctic'], 0),
            ]
            for order, (body, options, correct) in enumerate(samples):
                question = Question(quiz_set_id=quiz.id, body=body, order=order, time_limit=20, points=1000)
                question.choices = [Choice(body=o, is_correct=(i == correct)) for i, o in enumerate(options)]
                db.session.add(question)

            db.session.commit()
            print('Database has been reset and seeded!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app
