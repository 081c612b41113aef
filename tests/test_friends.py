from __future__ import annotations

import pytest

from app.models import FriendRequestStatus
from app.services import friends as friend_service


@pytest.fixture()
def trio(make_user) -> None:
    make_user("alice", user_id="a")
    make_user("bob", user_id="b")
    make_user("carol", user_id="c")


def test_send_and_accept_request(db_session, trio) -> None:
    request = friend_service.send_request(db_session, "a", "bob")
    assert request.status is FriendRequestStatus.PENDING

    requests = friend_service.list_requests(db_session, "b")
    assert [item.id for item in requests.incoming] == [request.id]
    assert requests.outgoing == []

    accepted = friend_service.accept_request(db_session, request.id, "b")

    assert accepted.status is FriendRequestStatus.ACCEPTED
    assert accepted.responded_at is not None
    assert [friend.id for friend in friend_service.list_friends(db_session, "a")] == ["b"]
    assert [friend.id for friend in friend_service.list_friends(db_session, "b")] == ["a"]


def test_duplicate_pending_request_is_rejected(db_session, trio) -> None:
    friend_service.send_request(db_session, "a", "bob")
    with pytest.raises(friend_service.FriendRequestError, match="already sent"):
        friend_service.send_request(db_session, "a", "bob")


def test_reverse_pending_request_is_reported(db_session, trio) -> None:
    friend_service.send_request(db_session, "a", "bob")
    with pytest.raises(friend_service.FriendRequestError, match="already sent you"):
        friend_service.send_request(db_session, "b", "alice")


def test_request_between_friends_is_rejected(db_session, trio) -> None:
    request = friend_service.send_request(db_session, "a", "bob")
    friend_service.accept_request(db_session, request.id, "b")

    with pytest.raises(friend_service.FriendRequestError, match="Already friends"):
        friend_service.send_request(db_session, "b", "alice")


def test_declined_request_can_be_sent_again(db_session, trio) -> None:
    request = friend_service.send_request(db_session, "a", "bob")
    friend_service.decline_request(db_session, request.id, "b")

    again = friend_service.send_request(db_session, "b", "alice")

    assert again.status is FriendRequestStatus.PENDING
    assert again.requester.id == "b"
    assert again.addressee.id == "a"


def test_self_and_unknown_targets(db_session, trio) -> None:
    with pytest.raises(friend_service.FriendRequestError):
        friend_service.send_request(db_session, "a", "alice")
    with pytest.raises(friend_service.FriendRequestNotFound):
        friend_service.send_request(db_session, "a", "nobody")


def test_only_addressee_may_accept(db_session, trio) -> None:
    request = friend_service.send_request(db_session, "a", "bob")

    with pytest.raises(friend_service.FriendRequestForbidden):
        friend_service.accept_request(db_session, request.id, "a")
    with pytest.raises(friend_service.FriendRequestForbidden):
        friend_service.decline_request(db_session, request.id, "c")
