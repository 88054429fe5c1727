import asyncio

import pytest

from errors import NotParticipant, NotYourTurn, RoomFull, RoomNotFound, Unauthenticated
from invites import build_invite_link
from models import DRAW, RoomStatus, SessionContext
from redis_keys import REDIS_INVITE_KEY

ANONYMOUS = SessionContext()


async def test_create_requires_session(coordinator):
    with pytest.raises(Unauthenticated):
        await coordinator.create_room("chess", ANONYMOUS)
    with pytest.raises(Unauthenticated):
        await coordinator.create_room("chess", None)


async def test_join_requires_session(coordinator, alice):
    room_id = await coordinator.create_room("chess", alice)
    with pytest.raises(Unauthenticated):
        await coordinator.join_room(room_id, ANONYMOUS)


async def test_chess_scenario(coordinator, alice, bob, carol):
    room_id = await coordinator.create_room("chess", alice)
    room = await coordinator.get_room(room_id)
    assert room.status == RoomStatus.WAITING
    assert room.players == ["alice@x"]

    room = await coordinator.join_room(room_id, bob)
    assert room.status == RoomStatus.PLAYING
    assert room.players == ["alice@x", "bob@y"]
    assert room.current_turn == "alice@x"

    await coordinator.report_move(room_id, alice, {"fen": "after e4"}, "bob@y")
    room = await coordinator.get_room(room_id)
    assert room.game_state == {"fen": "after e4"}
    assert room.current_turn == "bob@y"

    await coordinator.leave_room(room_id, bob)
    room = await coordinator.get_room(room_id)
    assert room.status == RoomStatus.FINISHED
    assert room.players == ["alice@x"]

    # A finished room is closed to newcomers
    with pytest.raises(RoomFull):
        await coordinator.join_room(room_id, carol)


async def test_join_is_idempotent(coordinator, alice, bob):
    room_id = await coordinator.create_room("chess", alice)
    first = await coordinator.join_room(room_id, bob)
    second = await coordinator.join_room(room_id, bob)
    assert second == first
    assert second.players.count("bob@y") == 1


async def test_many_concurrent_joiners(coordinator, alice):
    room_id = await coordinator.create_room("chess", alice)
    sessions = [SessionContext(identity=f"p{i}@x", display_name=f"P{i}") for i in range(8)]
    results = await asyncio.gather(
        *(coordinator.join_room(room_id, s) for s in sessions),
        return_exceptions=True,
    )
    assert sum(isinstance(r, RoomFull) for r in results) == 7
    room = await coordinator.get_room(room_id)
    assert len(room.players) == 2
    assert room.status == RoomStatus.PLAYING


async def test_join_missing_room(coordinator, bob):
    with pytest.raises(RoomNotFound) as exc:
        await coordinator.join_room("gone", bob)
    assert exc.value.message == "Room no longer available"


async def test_move_out_of_turn_changes_nothing(coordinator, alice, bob):
    room_id = await coordinator.create_room("chess", alice)
    await coordinator.join_room(room_id, bob)
    before = await coordinator.get_room(room_id)

    with pytest.raises(NotYourTurn):
        await coordinator.report_move(room_id, bob, {"cheat": True}, "bob@y")

    after = await coordinator.get_room(room_id)
    assert after.game_state == before.game_state
    assert after.current_turn == before.current_turn


async def test_move_before_game_starts_is_rejected(coordinator, alice):
    room_id = await coordinator.create_room("chess", alice)
    with pytest.raises(NotYourTurn):
        await coordinator.report_move(room_id, alice, {"early": True}, "alice@x")


async def test_leave_is_idempotent(coordinator, alice, bob, carol):
    room_id = await coordinator.create_room("chess", alice)
    await coordinator.join_room(room_id, bob)

    await coordinator.leave_room(room_id, carol)
    room = await coordinator.get_room(room_id)
    assert room.status == RoomStatus.PLAYING

    await coordinator.leave_room(room_id, bob)
    await coordinator.leave_room(room_id, bob)
    room = await coordinator.get_room(room_id)
    assert room.players == ["alice@x"]


async def test_leave_waiting_room_deletes_it(coordinator, alice):
    room_id = await coordinator.create_room("chess", alice)
    await coordinator.leave_room(room_id, alice)
    with pytest.raises(RoomNotFound):
        await coordinator.get_room(room_id)
    # leaving a room that is already gone is silent
    await coordinator.leave_room(room_id, alice)


async def test_join_by_invite_link(coordinator, alice, bob):
    room_id = await coordinator.create_room("chess", alice)
    link = build_invite_link("chess", room_id, base_url="https://games.example.com")
    room = await coordinator.join_by_invite_link(link, bob)
    assert room.players == ["alice@x", "bob@y"]


async def test_join_by_invite_token(coordinator, alice, bob):
    room_id = await coordinator.create_room("chess", alice)
    invite_url = await coordinator.create_invite(room_id, alice, 60)
    token = invite_url.split("invite=")[1]
    room = await coordinator.join_by_invite_link(token, bob)
    assert room.id == room_id
    assert room.status == RoomStatus.PLAYING


async def test_join_by_bare_room_id(coordinator, alice, bob):
    room_id = await coordinator.create_room("chess", alice)
    room = await coordinator.join_by_invite_link(room_id, bob)
    assert room.has_player("bob@y")


async def test_join_by_invite_link_requires_session(coordinator, alice):
    room_id = await coordinator.create_room("chess", alice)
    link = build_invite_link("chess", room_id)
    with pytest.raises(Unauthenticated):
        await coordinator.join_by_invite_link(link, ANONYMOUS)
    room = await coordinator.get_room(room_id)
    assert room.players == ["alice@x"]


async def test_join_by_link_without_room(coordinator, bob):
    with pytest.raises(RoomNotFound):
        await coordinator.join_by_invite_link("https://games.example.com/play/chess", bob)


async def test_only_players_can_invite(coordinator, alice, carol):
    room_id = await coordinator.create_room("chess", alice)
    with pytest.raises(NotParticipant):
        await coordinator.create_invite(room_id, carol)


async def test_report_outcome(coordinator, alice, bob, carol):
    room_id = await coordinator.create_room("chess", alice)
    await coordinator.join_room(room_id, bob)

    with pytest.raises(NotParticipant):
        await coordinator.report_outcome(room_id, carol, DRAW)

    room = await coordinator.report_outcome(room_id, bob, DRAW)
    assert room.status == RoomStatus.FINISHED
    assert room.winner == DRAW


async def test_open_rooms_listing(coordinator, alice, bob):
    waiting = await coordinator.create_room("chess", alice)
    full = await coordinator.create_room("chess", bob)
    await coordinator.join_room(full, alice)
    rooms = await coordinator.list_open_rooms("chess")
    assert [r.id for r in rooms] == [waiting]


async def test_expired_invite_link_does_not_join(coordinator, redis_client, alice, bob):
    room_id = await coordinator.create_room("chess", alice)
    invite_url = await coordinator.create_invite(room_id, alice, 60)
    token = invite_url.split("invite=")[1]
    await redis_client.delete(REDIS_INVITE_KEY.format(token=token))

    with pytest.raises(RoomNotFound):
        await coordinator.join_by_invite_link(invite_url, bob)
    room = await coordinator.get_room(room_id)
    assert room.players == ["alice@x"]


async def test_invite_token_for_another_room_does_not_join(coordinator, alice, bob, carol):
    room_id = await coordinator.create_room("chess", alice)
    other_id = await coordinator.create_room("chess", carol)
    invite_url = await coordinator.create_invite(other_id, carol, 60)
    token = invite_url.split("invite=")[1]
    forged = build_invite_link("chess", room_id, token)

    with pytest.raises(RoomNotFound):
        await coordinator.join_by_invite_link(forged, bob)
    assert (await coordinator.get_room(room_id)).players == ["alice@x"]


async def test_live_invite_link_joins(coordinator, alice, bob):
    room_id = await coordinator.create_room("chess", alice)
    invite_url = await coordinator.create_invite(room_id, alice, 60)
    room = await coordinator.join_by_invite_link(invite_url, bob)
    assert room.players == ["alice@x", "bob@y"]
