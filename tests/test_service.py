import pytest
import RNS

from relayd.config import RelayRuntimeConfig
from relayd.constants import NS_FILE, NS_GROUP
from relayd.service import RelayService


class FakeResource:
    def __init__(self, link, total_size: int) -> None:
        self.link = link
        self.total_size = total_size
        self.status = None
        self.data = None


def test_service_wires_components(relay) -> None:
    assert relay.router.mode == "app"
    assert relay.rooms_for(NS_FILE) is relay.file_rooms
    assert relay.rooms_for(NS_GROUP) is relay.group_rooms
    with pytest.raises(ValueError):
        relay.rooms_for("chat")


def test_start_without_transports_fails(relay) -> None:
    with pytest.raises(RuntimeError):
        relay.start()


def test_invalid_mode_fails_at_construction() -> None:
    with pytest.raises(ValueError):
        RelayService(RelayRuntimeConfig(router_mode="chat"))


def test_stop_closes_connections(relay, connect) -> None:
    a = connect()
    relay.router.route_packet(a, '{"type":"join_file_room","fileId":"f1"}')
    relay.stop()
    assert a.torn_down
    assert not a.is_open
    assert not relay.file_rooms.has_room("f1")


def test_format_stats(relay, connect) -> None:
    a = connect()
    relay.router.route_packet(a, '{"type":"ping"}')
    line = relay.stats_manager.format_stats()
    assert "mode=app" in line
    assert "connections=1" in line
    assert "pkts_in=1" in line


def test_resource_rejected_when_too_large(relay) -> None:
    resource = FakeResource(object(), relay.config.max_resource_bytes + 1)
    assert relay.resource_manager._resource_advertised(resource) is False
    assert relay.stats_manager.get("resources_rejected") == 1


def test_resource_rejected_for_unknown_link(relay) -> None:
    resource = FakeResource(object(), 10)
    assert relay.resource_manager._resource_advertised(resource) is False


def test_concluded_resource_is_routed(relay, make_conn) -> None:
    link = object()
    conn = make_conn("link")
    relay._links[link] = conn
    relay.session_manager.on_open(conn)
    relay.resource_manager.on_link_established(link)

    resource = FakeResource(link, 40)
    assert relay.resource_manager._resource_advertised(resource) is True
    assert relay.resource_manager.active_count(link) == 1

    resource.status = RNS.Resource.COMPLETE
    resource.data = conn.codec.encode({"type": "join_file_room", "fileId": "big"}).encode("utf-8")
    relay.resource_manager._resource_concluded(resource)

    assert relay.resource_manager.active_count(link) == 0
    assert relay.file_rooms.members("big") == {conn}


def test_resource_rejected_after_link_closed(relay, make_conn) -> None:
    link = object()
    relay._links[link] = make_conn("link")
    relay.resource_manager.on_link_established(link)
    relay.resource_manager.on_link_closed(link)

    assert relay.resource_manager._resource_advertised(FakeResource(link, 10)) is False
    assert link not in relay.resource_manager._active_resources


def test_send_after_link_closed_does_not_track_resource(relay, monkeypatch) -> None:
    class SentResource:
        def __init__(self, payload, link, **kwargs) -> None:
            self.link = link

    monkeypatch.setattr(RNS, "Resource", SentResource)
    link = object()
    relay.resource_manager.on_link_established(link)
    relay.resource_manager.on_link_closed(link)

    assert relay.resource_manager.send_via_resource(link, b"x" * 1000) is True
    assert link not in relay.resource_manager._active_resources
