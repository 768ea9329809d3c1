from relayd.registry import IdentityRegistry


def test_last_registration_wins(make_conn) -> None:
    reg = IdentityRegistry()
    a, b = make_conn("a"), make_conn("b")

    assert reg.register("alice", a) == (True, None)
    assert reg.register("alice", b) == (True, a)
    assert reg.lookup("alice") is b
    # The displaced connection is left open.
    assert a.is_open


def test_register_same_connection_twice_is_idempotent(make_conn) -> None:
    reg = IdentityRegistry()
    a = make_conn()
    reg.register("alice", a)
    assert reg.register("alice", a) == (True, None)
    assert len(reg) == 1


def test_lookup_is_case_insensitive(make_conn) -> None:
    reg = IdentityRegistry()
    a = make_conn()
    reg.register("Alice", a)
    assert reg.lookup("alice") is a
    assert reg.lookup("ALICE") is a
    assert "aLiCe" in reg
    assert reg.identities() == ["alice"]


def test_lookup_skips_closed_connection(make_conn) -> None:
    reg = IdentityRegistry()
    a = make_conn()
    reg.register("alice", a)
    a.mark_closed()
    assert reg.lookup("alice") is None
    assert reg.get_stats() == {"registered": 1, "stale": 1}


def test_lookup_unknown_or_non_string() -> None:
    reg = IdentityRegistry()
    assert reg.lookup("nobody") is None
    assert reg.lookup(None) is None  # type: ignore[arg-type]


def test_unregister_requires_ownership(make_conn) -> None:
    reg = IdentityRegistry()
    old, new = make_conn("old"), make_conn("new")
    reg.register("alice", old)
    reg.register("alice", new)

    assert reg.unregister("alice", old) is False
    assert reg.lookup("alice") is new

    assert reg.unregister("ALICE", new) is True
    assert reg.lookup("alice") is None
    assert len(reg) == 0


def test_closed_connection_is_not_registered(make_conn) -> None:
    reg = IdentityRegistry()
    a = make_conn()
    a.mark_closed()
    assert reg.register("alice", a) == (False, None)
    assert "alice" not in reg
