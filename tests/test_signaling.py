import asyncio

import pytest

from errors import ClientNotRegistered, InvalidRequest, RecipientNotFound, RecipientUnavailable, RoomNotFound
from signaling import SignalingService
from streams import PEER_JOINED, PEER_LEFT, SIGNAL, EventStream
from helpers import drain_events


async def join_and_announce(service, room_id, name):
    result = await service.join(room_id, name)
    await service.announce_join(result)
    return result


async def test_peer_list_contains_previous_joiners_only(service):
    names = ["Ada", "Grace", "Linus", "Barbara", "Ken"]
    joined = []
    for name in names:
        result = await join_and_announce(service, "r1", name)
        assert sorted(result.peers) == sorted(joined)
        assert result.client_id not in [client_id for client_id, _ in result.peers]
        joined.append((result.client_id, name))


async def test_join_scenario_notifies_existing_streams(service):
    ada = await service.join("r1", "Ada")
    assert ada.peers == []
    ada_stream = await service.open_stream("r1", ada.client_id)

    grace = await service.join("r1", "Grace")
    assert grace.peers == [(ada.client_id, "Ada")]
    await service.announce_join(grace)

    assert drain_events(ada_stream) == [(PEER_JOINED, {"clientId": grace.client_id, "name": "Grace"})]


async def test_peer_joined_skips_subject_and_unattached_sessions(service):
    ada = await join_and_announce(service, "r1", "Ada")
    grace = await join_and_announce(service, "r1", "Grace")
    grace_stream = await service.open_stream("r1", grace.client_id)

    linus = await service.join("r1", "Linus")
    linus_stream = await service.open_stream("r1", linus.client_id)
    delivered = await service.announce_join(linus)

    # Ada never opened a stream, Linus is the subject
    assert delivered == 1
    assert drain_events(grace_stream) == [(PEER_JOINED, {"clientId": linus.client_id, "name": "Linus"})]
    assert drain_events(linus_stream) == []
    assert ada.client_id in service.registry.lookup_room("r1").sessions


async def test_join_trims_and_caps_inputs(service):
    result = await service.join("  r1  ", "  " + "x" * 100 + "  ")
    assert result.room_id == "r1"
    assert result.name == "x" * 64
    assert service.registry.lookup_room("r1").get(result.client_id).name == "x" * 64


@pytest.mark.parametrize("room_id, name", [("", "Ada"), ("r1", ""), ("   ", "Ada"), (None, "Ada"), ("r1", None)])
async def test_join_requires_room_and_name(service, room_id, name):
    with pytest.raises(InvalidRequest):
        await service.join(room_id, name)
    assert service.registry.room_count() == 0


async def test_room_ids_are_case_sensitive(service):
    await service.join("Lobby", "Ada")
    result = await service.join("lobby", "Grace")
    assert result.peers == []
    assert service.registry.room_count() == 2


async def test_concurrent_joins_to_unseen_room_share_one_room(service):
    results = await asyncio.gather(*(service.join("fresh", f"user{i}") for i in range(10)))
    assert service.registry.room_count() == 1
    room = service.registry.lookup_room("fresh")
    assert len(room) == 10
    assert len({result.client_id for result in results}) == 10


async def test_join_retries_when_room_is_dropped_underneath(service):
    ada = await service.join("r1", "Ada")
    old_room = service.registry.lookup_room("r1")

    async with old_room.lock:
        pending = asyncio.create_task(service.join("r1", "Grace"))
        for _ in range(5):
            await asyncio.sleep(0)
        old_room.remove(ada.client_id)
        await service.registry.delete_room_if_empty("r1")

    grace = await pending
    new_room = service.registry.lookup_room("r1")
    assert old_room.closed
    assert new_room is not old_room
    assert list(new_room.sessions) == [grace.client_id]
    assert grace.peers == []


async def test_signal_scenario_delivers_one_frame(service):
    ada = await join_and_announce(service, "r1", "Ada")
    grace = await join_and_announce(service, "r1", "Grace")
    ada_stream = await service.open_stream("r1", ada.client_id)
    grace_stream = await service.open_stream("r1", grace.client_id)

    payload = {"type": "offer", "sdp": "v=0\r\n", "nested": [1, None, {"x": True}]}
    await service.relay("r1", ada.client_id, grace.client_id, payload)

    assert drain_events(grace_stream) == [(SIGNAL, {"from": ada.client_id, "data": payload})]
    assert drain_events(ada_stream) == []


async def test_signals_from_one_sender_keep_order(service):
    ada = await service.join("r1", "Ada")
    grace = await service.join("r1", "Grace")
    grace_stream = await service.open_stream("r1", grace.client_id)

    for n in range(5):
        await service.relay("r1", ada.client_id, grace.client_id, {"seq": n})

    assert [event[1]["data"]["seq"] for event in drain_events(grace_stream)] == [0, 1, 2, 3, 4]


async def test_signal_to_target_without_stream_is_unavailable(service):
    ada = await service.join("r1", "Ada")
    grace = await service.join("r1", "Grace")
    with pytest.raises(RecipientUnavailable):
        await service.relay("r1", ada.client_id, grace.client_id, {"type": "offer"})


async def test_signal_to_unknown_target_or_room(service):
    ada = await service.join("r1", "Ada")
    with pytest.raises(RecipientNotFound):
        await service.relay("r1", ada.client_id, "nobody", {"type": "offer"})
    with pytest.raises(RoomNotFound):
        await service.relay("r2", ada.client_id, "nobody", {"type": "offer"})


@pytest.mark.parametrize(
    "room_id, sender, target, data",
    [
        ("", "a", "b", {"type": "offer"}),
        ("r1", None, "b", {"type": "offer"}),
        ("r1", "a", "", {"type": "offer"}),
        ("r1", "a", "b", None),
        ("r1", "a", "b", ""),
        ("r1", "a", "b", 0),
        ("r1", "a", "b", False),
    ],
)
async def test_signal_requires_all_fields(service, room_id, sender, target, data):
    with pytest.raises(InvalidRequest):
        await service.relay(room_id, sender, target, data)


async def test_stream_close_tears_down_session(service):
    ada = await join_and_announce(service, "r1", "Ada")
    grace = await join_and_announce(service, "r1", "Grace")
    ada_stream = await service.open_stream("r1", ada.client_id)
    grace_stream = await service.open_stream("r1", grace.client_id)

    grace_stream.close()
    await service.drain()

    assert drain_events(ada_stream) == [(PEER_LEFT, {"clientId": grace.client_id})]
    assert service.registry.lookup_room("r1").get(grace.client_id) is None
    with pytest.raises(RecipientNotFound):
        await service.relay("r1", ada.client_id, grace.client_id, {"type": "offer"})


async def test_concurrent_teardown_triggers_remove_once(service):
    ada = await join_and_announce(service, "r1", "Ada")
    grace = await join_and_announce(service, "r1", "Grace")
    ada_stream = await service.open_stream("r1", ada.client_id)
    grace_stream = await service.open_stream("r1", grace.client_id)

    grace_stream.close()
    results = await asyncio.gather(*(service.leave("r1", grace.client_id) for _ in range(3)))
    await service.drain()

    assert sum(results) == 1
    assert drain_events(ada_stream) == [(PEER_LEFT, {"clientId": grace.client_id})]


async def test_leave_closes_stream_and_is_idempotent(service):
    ada = await join_and_announce(service, "r1", "Ada")
    grace = await join_and_announce(service, "r1", "Grace")
    ada_stream = await service.open_stream("r1", ada.client_id)

    assert await service.leave("r1", ada.client_id) is True
    assert ada_stream.closed
    assert await service.leave("r1", ada.client_id) is False
    await service.drain()

    with pytest.raises(ClientNotRegistered):
        await service.open_stream("r1", ada.client_id)
    assert list(service.registry.lookup_room("r1").sessions) == [grace.client_id]


async def test_last_leave_deletes_room(service):
    ada = await service.join("r1", "Ada")
    grace = await service.join("r1", "Grace")

    await service.leave("r1", ada.client_id)
    assert "r1" in service.registry
    await service.leave("r1", grace.client_id)
    assert "r1" not in service.registry
    assert await service.leave("r1", grace.client_id) is False


async def test_last_stream_close_deletes_room(service):
    ada = await service.join("r1", "Ada")
    stream = await service.open_stream("r1", ada.client_id)

    stream.close()
    await service.drain()

    assert service.registry.room_count() == 0


async def test_leave_requires_fields(service):
    with pytest.raises(InvalidRequest):
        await service.leave("r1", "")


async def test_open_stream_rejects_unregistered_clients(service):
    await service.join("r1", "Ada")
    with pytest.raises(ClientNotRegistered):
        await service.open_stream("r1", "nobody")
    with pytest.raises(ClientNotRegistered):
        await service.open_stream("r2", "nobody")
    with pytest.raises(InvalidRequest):
        await service.open_stream("r1", None)


async def test_reopening_stream_replaces_previous_without_teardown(service):
    ada = await join_and_announce(service, "r1", "Ada")
    grace = await join_and_announce(service, "r1", "Grace")
    ada_stream = await service.open_stream("r1", ada.client_id)
    first = await service.open_stream("r1", grace.client_id)
    second = await service.open_stream("r1", grace.client_id)
    await service.drain()

    assert first.closed
    assert not second.closed
    assert service.registry.lookup_room("r1").get(grace.client_id).stream is second
    assert drain_events(ada_stream) == []

    await service.relay("r1", ada.client_id, grace.client_id, {"type": "answer"})
    assert drain_events(second) == [(SIGNAL, {"from": ada.client_id, "data": {"type": "answer"}})]


async def test_slow_consumer_is_torn_down(registry):
    service = SignalingService(registry=registry, keepalive_interval=60, stream_queue_size=1)
    ada = await service.join("r1", "Ada")
    grace = await service.join("r1", "Grace")
    ada_stream = await service.open_stream("r1", ada.client_id)
    grace_stream = await service.open_stream("r1", grace.client_id)

    await service.relay("r1", grace.client_id, ada.client_id, {"n": 1})
    with pytest.raises(RecipientUnavailable):
        await service.relay("r1", grace.client_id, ada.client_id, {"n": 2})
    await service.drain()

    assert ada_stream.closed
    assert registry.lookup_room("r1").get(ada.client_id) is None
    assert drain_events(grace_stream) == [(PEER_LEFT, {"clientId": ada.client_id})]
    await service.shutdown()


async def test_shutdown_closes_streams_and_empties_registry(service):
    ada = await service.join("r1", "Ada")
    grace = await service.join("r2", "Grace")
    streams = [
        await service.open_stream("r1", ada.client_id),
        await service.open_stream("r2", grace.client_id),
    ]

    await service.shutdown()

    assert all(stream.closed for stream in streams)
    assert service.registry.room_count() == 0


@pytest.mark.parametrize("data", [{}, [], "candidate:0", 1, True])
async def test_signal_payload_is_opaque(service, data):
    ada = await service.join("r1", "Ada")
    grace = await service.join("r1", "Grace")
    grace_stream = await service.open_stream("r1", grace.client_id)

    await service.relay("r1", ada.client_id, grace.client_id, data)

    assert drain_events(grace_stream) == [(SIGNAL, {"from": ada.client_id, "data": data})]


async def test_stale_close_does_not_remove_replacement_stream(service):
    ada = await service.join("r1", "Ada")
    first = await service.open_stream("r1", ada.client_id)
    room = service.registry.lookup_room("r1")
    replacement = EventStream("r1", ada.client_id)

    async with room.lock:
        teardown = asyncio.create_task(service.on_stream_closed("r1", ada.client_id, first))
        for _ in range(5):
            await asyncio.sleep(0)
        # The session switches streams while the stale teardown waits for the lock
        room.attach_stream(ada.client_id, replacement)

    assert await teardown is False
    assert room.get(ada.client_id).stream is replacement
    assert "r1" in service.registry
    first.close()
    replacement.close()
    await service.drain()
