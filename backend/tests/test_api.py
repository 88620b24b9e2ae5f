

def _balance(player_client):
    return player_client.get('/balance').get_json()['balance']


def _start_match(alice, bob, commit, creator=(0, 'abc'), opponent=(2, 'xyz'), wager=1000):
    res = alice.post('/api/matches/create', json={'commitment': commit(*creator), 'wager': wager})
    assert res.status_code == 201
    code = res.get_json()['code']
    res = bob.post(f'/api/matches/{code}/join', json={'commitment': commit(*opponent)})
    assert res.status_code == 200
    return code


def test_register_login_and_balance(client):
    res = client.post('/register', json={'username': 'alice', 'password': 'pw'})
    assert res.status_code == 201
    assert client.get('/check_login').get_json()['user']['username'] == 'alice'
    assert client.get('/balance').get_json() == {'identity': 'alice', 'balance': 0}
    assert client.post('/logout').status_code == 200
    assert client.get('/check_login').status_code == 401
    assert client.post('/login', json={'username': 'alice', 'password': 'nope'}).status_code == 401


def test_match_endpoints_require_login(client, commit):
    res = client.post('/api/matches/create', json={'commitment': commit(0, 'abc'), 'wager': 10})
    assert res.status_code == 401


def test_create_match(make_player, commit):
    alice = make_player('alice')
    res = alice.post('/api/matches/create', json={'commitment': commit(0, 'abc'), 'wager': 1000})
    assert res.status_code == 201
    data = res.get_json()
    match = data['match']
    assert match['code'] == data['code']
    assert match['status'] == 'open'
    assert match['creator_id'] == 'alice'
    assert match['opponent_id'] is None
    assert match['opponent_commitment'] is None
    assert match['settlement_state'] == 'unsettled'
    assert _balance(alice) == 9000


def test_create_validation_errors(make_player, commit):
    alice = make_player('alice', balance=500)
    res = alice.post('/api/matches/create', json={'commitment': 'abc', 'wager': 10})
    assert res.status_code == 400
    assert res.get_json()['error'] == 'invalid_commitment'
    res = alice.post('/api/matches/create', json={'commitment': commit(0, 'abc'), 'wager': -1})
    assert res.get_json()['error'] == 'invalid_wager'
    res = alice.post('/api/matches/create', json={'commitment': commit(0, 'abc'), 'wager': 2 ** 63})
    assert res.status_code == 422
    assert res.get_json()['error'] == 'numerical_overflow'
    res = alice.post('/api/matches/create', json={'commitment': commit(0, 'abc'), 'wager': 501})
    assert res.status_code == 402
    assert res.get_json()['error'] == 'insufficient_funds'
    assert _balance(alice) == 500


def test_zero_wager_policy(flask_app, make_player, commit):
    alice = make_player('alice')
    assert alice.post('/api/matches/create', json={'commitment': commit(0, 'a'), 'wager': 0}).status_code == 201
    flask_app.config['REQUIRE_NONZERO_WAGER'] = True
    res = alice.post('/api/matches/create', json={'commitment': commit(0, 'a'), 'wager': 0})
    assert res.status_code == 400
    assert res.get_json()['error'] == 'invalid_wager'


def test_zero_wager_match_settles_and_pays_nothing(make_player, commit, balance_of):
    alice = make_player('alice')
    bob = make_player('bob')
    code = _start_match(alice, bob, commit, wager=0)
    alice.post(f'/api/matches/{code}/reveal', json={'move': 0, 'salt': 'abc'})
    final = bob.post(f'/api/matches/{code}/reveal', json={'move': 2, 'salt': 'xyz'}).get_json()
    assert final['status'] == 'ended'
    assert final['outcome'] == 'creator_wins'
    assert (final['house_fee'], final['payout']) == (0, 0)
    assert final['movements'] == []
    assert final['settlement_state'] == 'paid'
    assert _balance(alice) == 10000
    assert _balance(bob) == 10000
    assert balance_of('house') == 0


def test_zero_wager_tie_settles(make_player, commit):
    alice = make_player('alice')
    bob = make_player('bob')
    code = _start_match(alice, bob, commit, opponent=(0, 'xyz'), wager=0)
    bob.post(f'/api/matches/{code}/reveal', json={'move': 0, 'salt': 'xyz'})
    final = alice.post(f'/api/matches/{code}/reveal', json={'move': 0, 'salt': 'abc'}).get_json()
    assert final['outcome'] == 'tie'
    assert final['settlement_state'] == 'paid'


def test_full_match_creator_wins(make_player, commit, balance_of):
    alice = make_player('alice')
    bob = make_player('bob')
    code = _start_match(alice, bob, commit)

    state = alice.get(f'/api/matches/{code}').get_json()
    assert state['status'] == 'committed'
    assert state['opponent_id'] == 'bob'

    res = alice.post(f'/api/matches/{code}/reveal', json={'move': 0, 'salt': 'abc'})
    assert res.status_code == 200
    assert res.get_json()['status'] == 'committed'
    assert res.get_json()['creator_revealed'] is True
    assert 'creator_move' not in res.get_json()

    res = bob.post(f'/api/matches/{code}/reveal', json={'move': 2, 'salt': 'xyz'})
    assert res.status_code == 200
    final = res.get_json()
    assert final['status'] == 'ended'
    assert final['outcome'] == 'creator_wins'
    assert (final['house_fee'], final['payout']) == (60, 1940)
    assert (final['creator_move'], final['opponent_move']) == (0, 2)
    assert final['settlement_state'] == 'paid'
    assert all(m['status'] == 'completed' for m in final['movements'])

    assert _balance(alice) == 9000 + 1940
    assert _balance(bob) == 9000
    assert balance_of('house') == 60
    assert balance_of(final['escrow_handle']) == 0


def test_full_match_tie(make_player, commit, balance_of):
    alice = make_player('alice')
    bob = make_player('bob')
    code = _start_match(alice, bob, commit, opponent=(0, 'xyz'))
    bob.post(f'/api/matches/{code}/reveal', json={'move': 0, 'salt': 'xyz'})
    final = alice.post(f'/api/matches/{code}/reveal', json={'move': 0, 'salt': 'abc'}).get_json()
    assert final['outcome'] == 'tie'
    assert _balance(alice) == 9000 + 970
    assert _balance(bob) == 9000 + 970
    assert balance_of('house') == 60


def test_tie_dust_swept_to_house(make_player, commit, balance_of):
    alice = make_player('alice')
    bob = make_player('bob')
    code = _start_match(alice, bob, commit, opponent=(1, 'xyz'), creator=(1, 'abc'), wager=17)
    alice.post(f'/api/matches/{code}/reveal', json={'move': 1, 'salt': 'abc'})
    final = bob.post(f'/api/matches/{code}/reveal', json={'move': 1, 'salt': 'xyz'}).get_json()
    assert {m['kind']: m['amount'] for m in final['movements']} == {
        'house_fee': 1,
        'creator_payout': 16,
        'opponent_payout': 16,
        'tie_dust': 1,
    }
    assert balance_of(final['escrow_handle']) == 0
    assert balance_of('house') == 2


def test_join_errors(make_player, commit):
    alice = make_player('alice')
    bob = make_player('bob')
    carol = make_player('carol')
    code = alice.post('/api/matches/create', json={'commitment': commit(0, 'abc'), 'wager': 10}).get_json()['code']

    res = alice.post(f'/api/matches/{code}/join', json={'commitment': commit(1, 'abc')})
    assert res.status_code == 403
    assert res.get_json()['error'] == 'unauthorized'

    assert bob.post(f'/api/matches/{code}/join', json={'commitment': commit(1, 'b')}).status_code == 200
    res = carol.post(f'/api/matches/{code}/join', json={'commitment': commit(1, 'c')})
    assert res.status_code == 409
    assert res.get_json()['error'] == 'game_not_open'

    res = carol.post('/api/matches/ZZZZZZ/join', json={'commitment': commit(1, 'c')})
    assert res.status_code == 404


def test_reveal_errors_leave_match_untouched(make_player, commit):
    alice = make_player('alice')
    bob = make_player('bob')
    mallory = make_player('mallory')
    code = alice.post('/api/matches/create', json={'commitment': commit(0, 'abc'), 'wager': 10}).get_json()['code']

    # reveal before the opponent joins
    res = alice.post(f'/api/matches/{code}/reveal', json={'move': 0, 'salt': 'abc'})
    assert res.status_code == 409
    assert res.get_json()['error'] == 'invalid_game_status'

    bob.post(f'/api/matches/{code}/join', json={'commitment': commit(2, 'xyz')})

    res = alice.post(f'/api/matches/{code}/reveal', json={'move': 0, 'salt': 'wrong'})
    assert res.status_code == 403
    assert res.get_json()['error'] == 'invalid_reveal'

    res = alice.post(f'/api/matches/{code}/reveal', json={'move': 7, 'salt': 'abc'})
    assert res.get_json()['error'] == 'invalid_reveal'

    res = mallory.post(f'/api/matches/{code}/reveal', json={'move': 0, 'salt': 'abc'})
    assert res.status_code == 403
    assert res.get_json()['error'] == 'unauthorized'
    res = mallory.post(f'/api/matches/{code}/reveal', json={'move': 7, 'salt': 'abc'})
    assert res.get_json()['error'] == 'unauthorized'

    state = alice.get(f'/api/matches/{code}').get_json()
    assert state['status'] == 'committed'
    assert not state['creator_revealed'] and not state['opponent_revealed']


def test_settlement_happens_once(make_player, commit, balance_of):
    alice = make_player('alice')
    bob = make_player('bob')
    code = _start_match(alice, bob, commit)
    alice.post(f'/api/matches/{code}/reveal', json={'move': 0, 'salt': 'abc'})
    res = alice.post(f'/api/matches/{code}/reveal', json={'move': 0, 'salt': 'abc'})
    assert res.status_code == 409
    bob.post(f'/api/matches/{code}/reveal', json={'move': 2, 'salt': 'xyz'})

    for player, move, salt in ((alice, 0, 'abc'), (bob, 2, 'xyz')):
        res = player.post(f'/api/matches/{code}/reveal', json={'move': move, 'salt': salt})
        assert res.status_code == 409
        assert res.get_json()['error'] == 'invalid_game_status'
    res = bob.post(f'/api/matches/{code}/join', json={'commitment': commit(1, 'again')})
    assert res.get_json()['error'] == 'game_not_open'

    state = alice.get(f'/api/matches/{code}').get_json()
    assert len(state['movements']) == 2
    assert _balance(alice) == 9000 + 1940
    assert balance_of('house') == 60


def test_commitment_helper(client, commit):
    res = client.get('/api/matches/commitment?move=2&salt=xyz')
    assert res.status_code == 200
    assert res.get_json() == {'move': 2, 'commitment': commit(2, 'xyz')}
    assert client.get('/api/matches/commitment?move=5&salt=xyz').status_code == 403


def test_unknown_match(client):
    res = client.get('/api/matches/NOPE00')
    assert res.status_code == 404
    assert res.get_json()['error'] == 'match_not_found'
