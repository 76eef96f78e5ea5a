from quizlive.services.feed import INSERT, UPDATE, ChangeFeed, field_equals


def test_subscribers_only_see_matching_rows():
    feed = ChangeFeed()
    mine = feed.subscribe('games', field_equals('id', 1))
    everything = feed.subscribe('games')
    others = feed.subscribe('answers')

    feed.publish(UPDATE, 'games', {'id': 1, 'version': 2})
    feed.publish(UPDATE, 'games', {'id': 2, 'version': 9})
    feed.publish(INSERT, 'answers', {'id': 5})

    assert [e.row['id'] for e in mine.drain()] == [1]
    assert [e.row['id'] for e in everything.drain()] == [1, 2]
    assert [e.event_type for e in others.drain()] == [INSERT]


def test_published_rows_are_copies():
    feed = ChangeFeed()
    sub = feed.subscribe('games')
    row = {'id': 1, 'phase': 'lobby'}
    feed.publish(UPDATE, 'games', row)
    row['phase'] = 'quiz'
    assert sub.get().row['phase'] == 'lobby'


def test_get_returns_none_when_idle():
    sub = ChangeFeed().subscribe('games')
    assert sub.get() is None
    assert sub.get(timeout=0.01) is None
    assert sub.drain() == []


def test_closed_subscription_stops_receiving():
    feed = ChangeFeed()
    with feed.subscribe('games') as sub:
        assert feed.subscriber_count('games') == 1
    assert sub.closed
    assert feed.subscriber_count() == 0
    feed.publish(UPDATE, 'games', {'id': 1})
    assert sub.drain() == []
    sub.close()


def test_listener_failure_does_not_block_others():
    feed = ChangeFeed()
    seen = []

    def broken(event):
        raise RuntimeError('boom')

    feed.add_listener('games', broken)
    feed.add_listener('games', seen.append)
    sub = feed.subscribe('games')
    feed.publish(UPDATE, 'games', {'id': 3})
    assert [e.row['id'] for e in seen] == [3]
    assert len(sub.drain()) == 1


def test_bad_predicate_is_skipped():
    feed = ChangeFeed()
    sub = feed.subscribe('games', lambda row: row['missing'])
    feed.publish(UPDATE, 'games', {'id': 1})
    assert sub.drain() == []


def test_slow_subscriber_keeps_newest_events():
    feed = ChangeFeed()
    sub = feed.subscribe('games', max_pending=3)
    for version in range(1, 11):
        feed.publish(UPDATE, 'games', {'id': 1, 'version': version})
    assert [e.row['version'] for e in sub.drain()] == [8, 9, 10]
    assert sub.dropped == 7
