import threading

from relayd.codec import JSON
from relayd.envelope import Frame
from relayd.rooms import RoomManager


def _frame(env: dict) -> Frame:
    return Frame(env, raw=JSON.encode(env), codec=JSON)


def test_join_creates_room_and_rejoin_is_noop(make_conn) -> None:
    rooms = RoomManager("file")
    a = make_conn()
    assert not rooms.has_room("f1")
    assert rooms.join("f1", a) is True
    assert rooms.join("f1", a) is False
    assert rooms.members("f1") == {a}


def test_leave_deletes_empty_room(make_conn) -> None:
    rooms = RoomManager("group")
    a, b = make_conn(), make_conn()
    rooms.join("g1", a)
    rooms.join("g1", b)

    assert rooms.leave("g1", a) is True
    assert rooms.has_room("g1")
    assert rooms.leave("g1", b) is True
    assert not rooms.has_room("g1")
    assert rooms.members("g1") == set()
    assert len(rooms) == 0


def test_leave_non_member_or_unknown_room(make_conn) -> None:
    rooms = RoomManager("group")
    a, b = make_conn(), make_conn()
    rooms.join("g1", a)
    assert rooms.leave("g1", b) is False
    assert rooms.leave("nope", a) is False
    assert rooms.members("g1") == {a}


def test_broadcast_excludes_sender(make_conn) -> None:
    rooms = RoomManager("group")
    a, b, c = make_conn(), make_conn(), make_conn()
    for m in (a, b, c):
        rooms.join("g1", m)

    env = {"type": "group_message", "groupId": "g1", "payload": "hi"}
    assert rooms.broadcast("g1", a, _frame(env)) == (2, 0)
    assert a.sent == []
    assert b.received() == [env]
    assert c.received() == [env]


def test_broadcast_skips_closed_members_without_pruning(make_conn) -> None:
    rooms = RoomManager("file")
    a, b, c = make_conn(), make_conn(), make_conn()
    for m in (a, b, c):
        rooms.join("f1", m)
    b.mark_closed()

    assert rooms.broadcast("f1", a, _frame({"type": "announce_chunk", "fileId": "f1"})) == (1, 0)
    assert b.sent == []
    assert b in rooms.members("f1")


def test_broadcast_continues_past_failed_member(make_conn) -> None:
    rooms = RoomManager("group")
    a, bad, c = make_conn(), make_conn(fail=True), make_conn()
    for m in (a, bad, c):
        rooms.join("g1", m)

    assert rooms.broadcast("g1", a, _frame({"type": "file_tag", "groupId": "g1"})) == (1, 1)
    assert len(c.sent) == 1


def test_broadcast_to_unknown_room(make_conn) -> None:
    rooms = RoomManager("group")
    assert rooms.broadcast("nope", make_conn(), _frame({"type": "group_message"})) == (0, 0)


def test_remove_from_all(make_conn) -> None:
    rooms = RoomManager("group")
    a, b = make_conn(), make_conn()
    rooms.join("g1", a)
    rooms.join("g2", a)
    rooms.join("g2", b)

    assert rooms.rooms_of(a) == ["g1", "g2"]
    assert rooms.remove_from_all(a) == 2
    assert not rooms.has_room("g1")
    assert rooms.members("g2") == {b}
    # No memberships left: still safe.
    assert rooms.remove_from_all(a) == 0


def test_closed_connection_cannot_join(make_conn) -> None:
    rooms = RoomManager("file")
    a = make_conn()
    a.mark_closed()
    assert rooms.join("f1", a) is False
    assert not rooms.has_room("f1")


def test_namespaces_are_independent(make_conn) -> None:
    files, groups = RoomManager("file"), RoomManager("group")
    a = make_conn()
    files.join("x", a)
    assert not groups.has_room("x")
    groups.join("x", a)
    files.leave("x", a)
    assert groups.members("x") == {a}


def test_concurrent_join_and_remove(make_conn) -> None:
    rooms = RoomManager("group")
    conns = [make_conn() for _ in range(200)]

    def join_all(chunk):
        for c in chunk:
            rooms.join("busy", c)

    threads = [threading.Thread(target=join_all, args=(conns[i::8],)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(rooms.members("busy")) == 200

    def remove_all(chunk):
        for c in chunk:
            rooms.remove_from_all(c)

    threads = [threading.Thread(target=remove_all, args=(conns[i::8],)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert not rooms.has_room("busy")


def test_get_stats(make_conn) -> None:
    rooms = RoomManager("group")
    a, b = make_conn(), make_conn()
    rooms.join("g1", a)
    rooms.join("g1", b)
    rooms.join("g2", a)
    stats = rooms.get_stats()
    assert stats["rooms_total"] == 2
    assert stats["memberships"] == 3
    assert stats["top_rooms"] == [("g1", 2), ("g2", 1)]
