from flask_socketio import join_room, leave_room, emit
from flask import current_app, request
from typing import Dict, Any

from quizlive import socketio
from quizlive.services.feed import ChangeEvent, ChangeFeed
from quizlive.services.store import ANSWERS, GAMES, PARTICIPANTS, current_store

NAMESPACE = '/ws'

_sid_to_ctx: Dict[str, Dict[str, Any]] = {}


def room_for(game_id) -> str:
    return f"game:{game_id}"


def _get_sid() -> str:
    return request.sid  # type: ignore[attr-defined]


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_disconnect(*args):
    ctx = _sid_to_ctx.pop(_get_sid(), None)
    if ctx:
        current_app.logger.info(f"[ws-disconnect] game={ctx.get('game_id')}")


def handle_join_game(data):
    game_code = (data or {}).get('game_code')
    if not game_code:
        emit('error', {'message': 'game_code is required'})
        return
    game = current_store().get_game_by_code(game_code)
    if game is None:
        emit('error', {'message': 'Game not found'})
        return
    room = room_for(game.id)
    join_room(room)
    _sid_to_ctx[_get_sid()] = {'game_id': game.id, 'participant_id': (data or {}).get('participant_id')}
    emit('joined', {'room': room, 'game_id': game.id})
    # A (re)joining client renders from the current record, no history needed
    emit('game_update', game.to_dict())


def handle_leave_game(data):
    game_code = (data or {}).get('game_code')
    if not game_code:
        emit('error', {'message': 'game_code is required'})
        return
    game = current_store().get_game_by_code(game_code)
    if game is None:
        emit('error', {'message': 'Game not found'})
        return
    room = room_for(game.id)
    leave_room(room)
    _sid_to_ctx.pop(_get_sid(), None)
    emit('left', {'room': room})


def handle_ping(data):
    emit('pong', data or {})


def _on_game_event(event: ChangeEvent) -> None:
    socketio.emit('game_update', event.row, to=room_for(event.row['id']), namespace=NAMESPACE)


def _on_participant_event(event: ChangeEvent) -> None:
    name = 'participant_joined' if event.event_type == 'insert' else 'participant_updated'
    socketio.emit(name, event.row, to=room_for(event.row['game_id']), namespace=NAMESPACE)


def _on_answer_event(event: ChangeEvent) -> None:
    participant = current_store().get_participant(event.row['participant_id'])
    if not participant:
        return
    # Only who answered what question; the choice stays private until reveal
    socketio.emit('answer_submitted', {
        'participant_id': event.row['participant_id'],
        'question_id': event.row['question_id'],
    }, to=room_for(participant['game_id']), namespace=NAMESPACE)


def register_feed_bridge(feed: ChangeFeed) -> None:
    """Forward change-feed events to the game's Socket.IO room."""
    feed.add_listener(GAMES, _on_game_event)
    feed.add_listener(PARTICIPANTS, _on_participant_event)
    feed.add_listener(ANSWERS, _on_answer_event)


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    socketio.on_event('connect', handle_connect, namespace=NAMESPACE)
    socketio.on_event('disconnect', handle_disconnect, namespace=NAMESPACE)
    socketio.on_event('join_game', handle_join_game, namespace=NAMESPACE)
    socketio.on_event('leave_game', handle_leave_game, namespace=NAMESPACE)
    socketio.on_event('ping', handle_ping, namespace=NAMESPACE)

    if testing:
        socketio.on_event('connect', handle_connect, namespace='/')
        socketio.on_event('disconnect', handle_disconnect, namespace='/')
        socketio.on_event('join_game', handle_join_game, namespace='/')
        socketio.on_event('leave_game', handle_leave_game, namespace='/')
        socketio.on_event('ping', handle_ping, namespace='/')
