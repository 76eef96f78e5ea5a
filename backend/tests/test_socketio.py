from conftest import question_payload


def _events(sio_client, name):
    return [pkt['args'][0] for pkt in sio_client.get_received('/ws') if pkt['name'] == name]


def _game_with_player(host_client, client):
    quiz = host_client.post('/api/quizzes', json={
        'name': 'Socket quiz',
        'questions': [question_payload(i) for i in range(2)],
    }).get_json()
    code = host_client.post('/api/games/create', json={'quiz_set_id': quiz['id']}).get_json()['game_code']
    player = client.post('/api/games/join', json={
        'game_code': code, 'user_id': 'device-1', 'nickname': 'Alice',
    }).get_json()['participant']
    return code, player


def test_socket_connect(sio_client):
    if not sio_client.is_connected('/ws'):
        sio_client.connect(namespace='/ws')
    assert sio_client.is_connected('/ws')
    received = sio_client.get_received('/ws')
    assert any(pkt['name'] == 'connected' for pkt in received)


def test_join_unknown_game(sio_client):
    sio_client.get_received('/ws')
    sio_client.emit('join_game', {'game_code': 'NOPE00'}, namespace='/ws')
    errors = _events(sio_client, 'error')
    assert errors and errors[0]['message'] == 'Game not found'


def test_join_sends_current_state(sio_client, host_client, client):
    code, _ = _game_with_player(host_client, client)
    sio_client.get_received('/ws')
    sio_client.emit('join_game', {'game_code': code}, namespace='/ws')
    received = sio_client.get_received('/ws')
    names = [pkt['name'] for pkt in received]
    assert names[:2] == ['joined', 'game_update']
    update = received[1]['args'][0]
    assert update['code'] == code
    assert update['phase'] == 'lobby'


def test_phase_changes_reach_the_room(sio_client, host_client, client):
    code, _ = _game_with_player(host_client, client)
    sio_client.emit('join_game', {'game_code': code}, namespace='/ws')
    sio_client.get_received('/ws')

    host_client.post(f'/api/games/{code}/start')
    host_client.post(f'/api/games/{code}/reveal')
    updates = _events(sio_client, 'game_update')
    assert [(u['phase'], u['is_answer_revealed']) for u in updates] == [('quiz', False), ('quiz', True)]
    assert updates[1]['version'] > updates[0]['version']


def test_participants_and_answers_are_broadcast(sio_client, host_client, client):
    code, alice = _game_with_player(host_client, client)
    sio_client.emit('join_game', {'game_code': code}, namespace='/ws')
    sio_client.get_received('/ws')

    client.post('/api/games/join', json={'game_code': code, 'user_id': 'device-2', 'nickname': 'Bob'})
    joined = _events(sio_client, 'participant_joined')
    assert [p['nickname'] for p in joined] == ['Bob']

    host_client.post(f'/api/games/{code}/start')
    q0 = client.get(f'/api/games/{code}/questions').get_json()[0]
    client.post(f'/api/games/{code}/answers', json={
        'participant_id': alice['id'], 'question_id': q0['id'], 'choice_id': q0['choices'][0]['id'], 'score': 800,
    })
    answered = _events(sio_client, 'answer_submitted')
    assert answered == [{'participant_id': alice['id'], 'question_id': q0['id']}]


def test_leave_stops_updates(sio_client, host_client, client):
    code, _ = _game_with_player(host_client, client)
    sio_client.emit('join_game', {'game_code': code}, namespace='/ws')
    sio_client.emit('leave_game', {'game_code': code}, namespace='/ws')
    assert any(pkt['name'] == 'left' for pkt in sio_client.get_received('/ws'))
    host_client.post(f'/api/games/{code}/start')
    assert _events(sio_client, 'game_update') == []


def test_ping(sio_client):
    sio_client.get_received('/ws')
    sio_client.emit('ping', {'n': 1}, namespace='/ws')
    assert _events(sio_client, 'pong') == [{'n': 1}]
