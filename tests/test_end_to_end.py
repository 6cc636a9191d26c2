"""Two admins contend for one user record while a third watches."""
from realtime_client.messages import decode_message
from realtime_client.state import LockState
from conftest import attach, auth_headers, make_user

LOCKS = "/api/v1/locks"


def _replay(sink, state: LockState) -> None:
    for frame in sink.frames:
        message = decode_message(frame[len("data: "):].strip())
        if message.kind == "lock-acquired":
            state.apply_lock_acquired(str(message.payload["entity_id"]), message.payload.get("holder_label"))
        elif message.kind == "lock-released":
            state.apply_lock_released(str(message.payload["entity_id"]))


def test_lock_lifecycle_is_visible_to_observers(client, db_session, registry):
    a = make_user(db_session, "a@example.com")
    b = make_user(db_session, "b@example.com")
    c = make_user(db_session, "c@example.com")
    tech = make_user(db_session, "t@example.com", role="technician")
    target = make_user(db_session, "u@example.com", role="user")
    entity = str(target.id)

    observer = attach(registry, c)
    tech_sink = attach(registry, tech)

    r = client.post(LOCKS, json={"entity_id": entity, "action": "acquire"}, headers=auth_headers(a))
    assert r.status_code == 200 and r.json()["granted"]

    r = client.post(LOCKS, json={"entity_id": entity, "action": "acquire"}, headers=auth_headers(b))
    assert r.status_code == 409
    assert r.json()["locked_by"] == "a@example.com"

    # Observer saw only the grant; the denied attempt is silent
    assert observer.event_types == ["lock-acquired"]
    state = LockState("c@example.com")
    _replay(observer, state)
    assert state.is_locked_by(entity) == "a@example.com"
    assert not state.am_i_editing(entity)

    r = client.post(LOCKS, json={"entity_id": entity, "action": "release"}, headers=auth_headers(a))
    assert r.json()["released"] is True

    assert observer.event_types == ["lock-acquired", "lock-released"]
    _replay(observer, state)
    assert state.is_locked_by(entity) is None

    # b can take it now
    r = client.post(LOCKS, json={"entity_id": entity, "action": "acquire"}, headers=auth_headers(b))
    assert r.status_code == 200 and r.json()["granted"]
    assert observer.events[-1]["data"]["holder_label"] == "b@example.com"

    # Lock traffic never reaches non-admin roles
    assert tech_sink.frames == []
