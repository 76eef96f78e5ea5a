from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from quizlive.services.errors import GenerationValidationError, QuizGenerationError
from quizlive.services.quizgen import QuizGenerationClient, validate_question_shape
from quizlive.services.store import current_store


quizzes = Blueprint('quizzes', __name__)


def _generation_client() -> QuizGenerationClient:
    cfg = current_app.config
    return QuizGenerationClient(cfg.get('QUIZGEN_URL'), timeout=int(cfg.get('QUIZGEN_TIMEOUT_SEC', 30)))


@quizzes.route('', methods=['POST'])
@login_required
def import_quiz():
    """Create a quiz set from already-authored questions."""
    data = request.get_json(silent=True) or {}
    name = (data.get('name') or '').strip()
    if not name:
        return jsonify({'error': 'Quiz name is required'}), 400
    raw_questions = data.get('questions') or []
    if not isinstance(raw_questions, list):
        return jsonify({'error': 'questions must be a list'}), 400
    try:
        questions = [validate_question_shape(q, i).to_dict() for i, q in enumerate(raw_questions)]
    except GenerationValidationError as exc:
        return jsonify({'error': str(exc)}), 400

    store = current_store()
    quiz = store.create_quiz_set(name, owner_id=current_user.id)
    created = store.insert_questions(quiz.id, questions)
    current_app.logger.info(f"[quiz-import] quiz_set={quiz.id} questions={len(created)}")
    return jsonify({'id': quiz.id, 'name': quiz.name, 'questions': [q.to_dict() for q in created]}), 201


@quizzes.route('/<int:quiz_set_id>', methods=['GET'])
@login_required
def get_quiz(quiz_set_id):
    store = current_store()
    quiz = store.get_quiz_set(quiz_set_id)
    if quiz is None:
        return jsonify({'error': 'Quiz not found'}), 404
    payload = quiz.to_dict()
    payload['questions'] = [q.to_dict() for q in store.list_questions(quiz.id)]
    return jsonify(payload)


@quizzes.route('/<int:quiz_set_id>/generate', methods=['POST'])
@login_required
def generate_questions(quiz_set_id):
    store = current_store()
    quiz = store.get_quiz_set(quiz_set_id)
    if quiz is None:
        return jsonify({'error': 'Quiz not found'}), 404
    if quiz.owner_id != current_user.id:
        return jsonify({'error': 'Only the owner may add questions'}), 403

    data = request.get_json(silent=True) or {}
    try:
        generated = _generation_client().generate(
            data.get('type'),
            data.get('content'),
            number_of_questions=data.get('numberOfQuestions', 5),
            difficulty=data.get('difficulty') or 'medium',
        )
    except GenerationValidationError as exc:
        current_app.logger.warning(f"[quiz-generate-rejected] quiz_set={quiz_set_id} error={exc}")
        return jsonify({'success': False, 'error': str(exc)}), 400
    except QuizGenerationError as exc:
        return jsonify({'success': False, 'error': str(exc)}), 502

    created = store.insert_questions(quiz.id, [q.to_dict() for q in generated])
    current_app.logger.info(f"[quiz-generate] quiz_set={quiz_set_id} questions={len(created)}")
    return jsonify({
        'success': True,
        'questions': [q.to_dict() for q in created],
        'message': f'Successfully generated {len(created)} questions',
    }), 201
