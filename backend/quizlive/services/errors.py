"""Exceptions shared by the store, the engine services and the HTTP layer."""


class QuizLiveError(Exception):
    pass


class StoreUnavailable(QuizLiveError):
    """A read or write could not reach the store; callers may retry."""


class ConstraintViolation(QuizLiveError):
    pass


class DuplicateAnswer(ConstraintViolation):
    def __init__(self, participant_id, question_id):
        super().__init__(f"participant {participant_id} already answered question {question_id}")
        self.participant_id = participant_id
        self.question_id = question_id


class DuplicateParticipant(ConstraintViolation):
    def __init__(self, game_id, user_id):
        super().__init__(f"user {user_id} already joined game {game_id}")
        self.game_id = game_id
        self.user_id = user_id


class GameNotFound(QuizLiveError):
    pass


class IllegalTransition(QuizLiveError):
    def __init__(self, source, target):
        super().__init__(f"illegal phase transition {source} -> {target}")
        self.source = source
        self.target = target


class AnswerRejected(QuizLiveError):
    """The answer payload is malformed or refers to something it may not."""


class GenerationValidationError(QuizLiveError, ValueError):
    """A generated quiz did not have the required shape; nothing was inserted."""


class QuizGenerationError(QuizLiveError):
    """The external generation service failed or returned garbage."""
