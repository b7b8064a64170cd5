import pytest

from collab.realtime.meetings import MeetingSessionStore
from collab.realtime.rooms import RoomManager
from collab.realtime.signaling import SignalingRelay

pytestmark = pytest.mark.anyio


@pytest.fixture
def relay(transport):
    return SignalingRelay(MeetingSessionStore(RoomManager(transport)))


async def test_offer_reaches_others_with_sender_name(relay, transport, make_connection):
    a = make_connection("A", "user-a", "Ann")
    b = make_connection("B", "user-b", "Ben")
    await relay.store.join_meeting("M1", a)
    await relay.store.join_meeting("M1", b)
    transport.clear()

    await relay.relay("webrtc-offer", a, {"meetingId": "M1", "offer": {"sdp": "v=0"}})

    assert transport.received("B") == [
        (
            "webrtc-offer",
            {
                "offer": {"sdp": "v=0"},
                "from": "Ann",
                "fromParticipantId": "A",
                "to": None,
                "toParticipantId": None,
            },
        )
    ]
    assert transport.received("A") == []


async def test_target_is_metadata_not_routing(relay, transport, make_connection):
    a = make_connection("A")
    for connection in (a, make_connection("B"), make_connection("C")):
        await relay.store.join_meeting("M1", connection)
    transport.clear()

    await relay.relay(
        "webrtc-ice-candidate", a, {"meetingId": "M1", "candidate": "c1", "toParticipantId": "B"}
    )

    assert transport.last("B", "webrtc-ice-candidate")["toParticipantId"] == "B"
    assert transport.last("C", "webrtc-ice-candidate")["toParticipantId"] == "B"


async def test_sender_outside_roster_uses_principal_name(relay, transport, make_connection):
    await relay.store.join_meeting("M1", make_connection("B"))
    outsider = make_connection("X", "user-x", email="xavier@example.com")

    await relay.relay("webrtc-answer", outsider, {"meetingId": "M1", "answer": "sdp"})

    assert transport.last("B", "webrtc-answer")["from"] == "xavier"


async def test_missing_meeting_id_is_dropped(relay, transport, make_connection):
    a = make_connection("A")
    await relay.store.join_meeting("M1", a)
    await relay.store.join_meeting("M1", make_connection("B"))
    transport.clear()

    assert await relay.relay("webrtc-offer", a, {"offer": "sdp"}) == 0
    assert await relay.relay("peer-ready", a, "M1") == 0
    assert transport.sent == []


async def test_unknown_kind_is_rejected(relay, make_connection):
    with pytest.raises(ValueError):
        await relay.relay("webrtc-bye", make_connection("A"), {"meetingId": "M1"})
