from flask_socketio import join_room, leave_room, emit
from rps_wager import socketio


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_watch_match(data):
    code = (data or {}).get('code')
    if not code:
        emit('error', {'message': 'code is required'})
        return
    room = f"match:{code.upper()}"
    join_room(room)
    emit('watching', {'room': room})


def handle_unwatch_match(data):
    code = (data or {}).get('code')
    if not code:
        emit('error', {'message': 'code is required'})
        return
    room = f"match:{code.upper()}"
    leave_room(room)
    emit('unwatched', {'room': room})


def handle_ping(data):
    emit('pong', data or {})


def emit_match_update(match) -> None:
    """Tell everyone watching a match that it changed."""
    socketio.emit(
        'match_update',
        {'code': match.code, 'status': match.status},
        to=f"match:{match.code}",
        namespace='/ws',
    )


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    socketio.on_event('connect', handle_connect, namespace='/ws')
    socketio.on_event('watch_match', handle_watch_match, namespace='/ws')
    socketio.on_event('unwatch_match', handle_unwatch_match, namespace='/ws')
    socketio.on_event('ping', handle_ping, namespace='/ws')

    if testing:
        # Test-only mirror on default namespace
        socketio.on_event('connect', handle_connect, namespace='/')
        socketio.on_event('watch_match', handle_watch_match, namespace='/')
        socketio.on_event('unwatch_match', handle_unwatch_match, namespace='/')
        socketio.on_event('ping', handle_ping, namespace='/')
