from flask import Blueprint, Response, abort, current_app, jsonify, request
from flask_login import current_user, login_required
import time

from quizlive.services.errors import AnswerRejected, DuplicateParticipant, GameNotFound
from quizlive.services.games.answers import submit_answer
from quizlive.services.games.controller import GamePhaseController
from quizlive.services.games.leaderboard import (
    compute_standings, compute_team_standings, export_csv, export_rows, question_stats,
)
from quizlive.services.games.phases import Phase
from quizlive.services.games.scheduler import schedule_phase_timer
from quizlive.services.store import current_store


games = Blueprint('games', __name__)

_last_controller_action: dict[str, float] = {}

MAX_NICKNAME_LENGTH = 20
TEAM_LIMITS = (2, 4)


def _game_or_404(store, game_code):
    game = store.get_game_by_code(game_code)
    if game is None:
        abort(404)
    return game


def _host_error(game):
    if game.host_id != current_user.id:
        return jsonify({'error': 'Only the host may control this game'}), 403
    return None


def _debounced(action: str, game_code: str) -> bool:
    try:
        debounce_ms = int(current_app.config.get('CONTROLLER_DEBOUNCE_MS', 0))
    except (TypeError, ValueError):
        debounce_ms = 0
    if debounce_ms <= 0:
        return False
    key = f"{action}:{game_code.upper()}:{current_user.id}"
    now = time.time() * 1000.0
    # Entries older than the window can no longer debounce anything
    for stale in [k for k, t in _last_controller_action.items() if now - t >= debounce_ms]:
        _last_controller_action.pop(stale, None)
    last = _last_controller_action.get(key, 0)
    _last_controller_action[key] = now
    return now - last < debounce_ms


def _controller(store) -> GamePhaseController:
    return GamePhaseController(store, max_attempts=int(current_app.config.get('TRANSITION_MAX_ATTEMPTS', 3)))


def _durations():
    cfg = current_app.config
    return {
        'answer_window_ms': int(cfg.get('ANSWER_WINDOW_MS', 20000)),
        'choice_reveal_delay_ms': int(cfg.get('CHOICE_REVEAL_DELAY_MS', 4000)),
        'reveal_hold_sec': int(cfg.get('REVEAL_HOLD_SEC', 6)),
    }


@games.route('/create', methods=['POST'])
@login_required
def create_game():
    data = request.get_json(silent=True) or {}
    store = current_store()
    quiz_set_id = data.get('quiz_set_id')
    if quiz_set_id is None or store.get_quiz_set(quiz_set_id) is None:
        return jsonify({'error': 'A valid quiz_set_id is required'}), 400
    team_mode = bool(data.get('team_mode', False))
    try:
        max_teams = int(data.get('max_teams', TEAM_LIMITS[0]))
    except (TypeError, ValueError):
        return jsonify({'error': 'max_teams must be an integer'}), 400
    low, high = TEAM_LIMITS
    if not low <= max_teams <= high:
        return jsonify({'error': f'max_teams must be between {low} and {high}'}), 400

    game = store.create_game(quiz_set_id, host_id=current_user.id, team_mode=team_mode, max_teams=max_teams)
    current_app.logger.info(f"[create] game={game.id} code={game.code} quiz_set={quiz_set_id} team_mode={team_mode}")
    return jsonify({
        'message': 'New game created!',
        'game_code': game.code,
        'game': game.to_dict(),
    }), 201


@games.route('/join', methods=['POST'])
def join_game():
    data = request.get_json(silent=True) or {}
    game_code = data.get('game_code')
    user_id = data.get('user_id')
    nickname = (data.get('nickname') or '').strip()
    if not all([game_code, user_id, nickname]):
        return jsonify({'error': 'Game code, user id and nickname are required'}), 400
    if len(nickname) > MAX_NICKNAME_LENGTH:
        return jsonify({'error': f'Nickname must be at most {MAX_NICKNAME_LENGTH} characters'}), 400

    store = current_store()
    game = store.get_game_by_code(game_code)
    if game is None:
        return jsonify({'error': 'Game not found'}), 404

    existing = store.find_participant(game.id, str(user_id))
    if existing:
        return jsonify({'already_joined': True, 'participant': existing}), 200
    if game.phase != Phase.LOBBY:
        return jsonify({'error': 'This game is not in the lobby'}), 403

    try:
        participant = store.add_participant(game.id, str(user_id), nickname, data.get('avatar_id'))
    except DuplicateParticipant:
        # Lost a race against our own earlier request
        return jsonify({'already_joined': True, 'participant': store.find_participant(game.id, str(user_id))}), 200
    current_app.logger.info(f"[join] game={game.id} participant={participant['id']} nickname={nickname}")
    return jsonify({'already_joined': False, 'participant': participant}), 201


@games.route('/<string:game_code>/state', methods=['GET'])
def get_game_state(game_code):
    store = current_store()
    game = _game_or_404(store, game_code)
    payload = game.to_dict()
    payload['participants'] = store.list_participants(game.id)
    payload['question_count'] = store.count_questions(game.quiz_set_id)
    payload['durations'] = _durations()
    return jsonify(payload)


@games.route('/<string:game_code>/questions', methods=['GET'])
def get_questions(game_code):
    store = current_store()
    game = _game_or_404(store, game_code)
    questions = [q.to_dict() for q in store.list_questions(game.quiz_set_id)]
    if current_app.config.get('SCORING_MODE') == 'server':
        for q in questions:
            if not _answer_visible(game, q['order']):
                for c in q['choices']:
                    c.pop('is_correct', None)
    return jsonify(questions)


def _answer_visible(game, order: int) -> bool:
    """Whether the correct choice of question ``order`` may be shown to players yet."""
    if game.phase == Phase.RESULTS:
        return True
    if game.phase != Phase.QUIZ:
        return False
    if order < game.current_question_sequence:
        return True
    return order == game.current_question_sequence and game.is_answer_revealed


@games.route('/<string:game_code>/team', methods=['POST'])
def choose_team(game_code):
    data = request.get_json(silent=True) or {}
    store = current_store()
    game = _game_or_404(store, game_code)
    if not game.team_mode:
        return jsonify({'error': 'Team mode is not enabled for this game'}), 400
    if game.phase != Phase.LOBBY:
        return jsonify({'error': 'Teams can only be chosen in the lobby'}), 400
    participant = store.get_participant(data.get('participant_id'))
    if not participant or participant['game_id'] != game.id:
        return jsonify({'error': 'Invalid participant'}), 400
    team_id = data.get('team_id')
    if isinstance(team_id, bool) or not isinstance(team_id, int) or not 1 <= team_id <= game.max_teams:
        return jsonify({'error': f'team_id must be between 1 and {game.max_teams}'}), 400
    return jsonify(store.set_participant_team(participant['id'], team_id))


def _control(game_code, action):
    store = current_store()
    game = _game_or_404(store, game_code)
    denied = _host_error(game)
    if denied:
        return denied
    if _debounced(action, game_code):
        return jsonify({'message': 'debounced'}), 202

    controller = _controller(store)
    try:
        if action == 'start':
            result = controller.start_game(game.id)
        elif action == 'reveal':
            result = controller.reveal_answer(game.id)
        else:
            result = controller.advance_question(game.id)
    except GameNotFound:
        abort(404)

    if result.blocked:
        messages = {
            'no_participants': 'No players in game',
            'no_questions': 'This quiz has no questions',
        }
        return jsonify({'error': messages.get(result.reason, result.reason)}), 400
    if result.applied:
        schedule_phase_timer(current_app._get_current_object(), game.id)
    return jsonify({'applied': result.applied, 'reason': result.reason, 'game': result.snapshot.to_dict()})


@games.route('/<string:game_code>/start', methods=['POST'])
@login_required
def start_game(game_code):
    return _control(game_code, 'start')


@games.route('/<string:game_code>/reveal', methods=['POST'])
@login_required
def reveal_answer(game_code):
    return _control(game_code, 'reveal')


@games.route('/<string:game_code>/advance', methods=['POST'])
@login_required
def advance_question(game_code):
    return _control(game_code, 'advance')


@games.route('/<string:game_code>/answers', methods=['POST'])
def post_answer(game_code):
    data = request.get_json(silent=True) or {}
    store = current_store()
    game = _game_or_404(store, game_code)
    participant_id = data.get('participant_id')
    question_id = data.get('question_id')
    choice_id = data.get('choice_id')
    if not all(v is not None for v in (participant_id, question_id, choice_id)):
        return jsonify({'error': 'participant_id, question_id and choice_id are required'}), 400
    participant = store.get_participant(participant_id)
    if not participant or participant['game_id'] != game.id:
        return jsonify({'error': 'Invalid participant'}), 400

    cfg = current_app.config
    try:
        result = submit_answer(
            store, participant_id, question_id, choice_id, data.get('score'),
            scoring_mode=cfg.get('SCORING_MODE', 'client'),
            answer_window_ms=int(cfg.get('ANSWER_WINDOW_MS', 20000)),
            reveal_delay_ms=int(cfg.get('CHOICE_REVEAL_DELAY_MS', 4000)),
        )
    except AnswerRejected as exc:
        return jsonify({'error': str(exc)}), 400
    return jsonify({'status': result.status, 'answer': result.answer}), (201 if result.accepted else 200)


@games.route('/<string:game_code>/standings', methods=['GET'])
def get_standings(game_code):
    store = current_store()
    game = _game_or_404(store, game_code)
    if game.phase == Phase.QUIZ and not game.is_answer_revealed:
        return jsonify({'error': 'Standings are available after the answer is revealed'}), 409
    standings = compute_standings(store, game.id)
    payload = {
        'game_id': game.id,
        'phase': game.phase.value,
        'current_question_sequence': game.current_question_sequence,
        'total_questions': store.count_questions(game.quiz_set_id),
        'standings': [s.to_dict() for s in standings],
    }
    if game.team_mode:
        payload['teams'] = [t.to_dict() for t in compute_team_standings(standings)]
    return jsonify(payload)


@games.route('/<string:game_code>/stats', methods=['GET'])
@login_required
def get_stats(game_code):
    store = current_store()
    game = _game_or_404(store, game_code)
    denied = _host_error(game)
    if denied:
        return denied
    return jsonify(question_stats(store, game.id))


@games.route('/<string:game_code>/export.csv', methods=['GET'])
@login_required
def export_standings(game_code):
    store = current_store()
    game = _game_or_404(store, game_code)
    denied = _host_error(game)
    if denied:
        return denied
    delimiter = '\t' if request.args.get('delimiter') == 'tab' else ','
    rows = export_rows(compute_standings(store, game.id), store.count_questions(game.quiz_set_id))
    return Response(
        export_csv(rows, delimiter=delimiter),
        mimetype='text/csv',
        headers={'Content-Disposition': f'attachment; filename=quiz-results-{game.code}.csv'},
    )
