"""Tests for RoomAccessGateway"""

import pytest

from gameon.services.room_access import Administrator, Participant, RoomAccessGateway
from gameon.services.room_errors import Forbidden


@pytest.fixture(name="gateway")
def gateway_fixture():
    return RoomAccessGateway(admin_scope="room_slots")


def test_admin_scope_and_wildcard(gateway):
    assert gateway.has_admin_scope(Administrator("a1", frozenset({"room_slots"})))
    assert gateway.has_admin_scope(Administrator("a2", frozenset({"*"})))
    assert not gateway.has_admin_scope(Administrator("a3", frozenset({"payments"})))
    assert not gateway.has_admin_scope(Participant("u1"))


def test_only_scoped_admins_override(gateway):
    assert gateway.is_override(Administrator("a1", frozenset({"room_slots"})))
    assert not gateway.is_override(Administrator("a3"))
    assert not gateway.is_override(Participant("u1"))


def test_require_admin(gateway):
    admin = Administrator("a1", frozenset({"room_slots"}))
    assert gateway.require_admin(admin, "lock slots") is admin

    with pytest.raises(Forbidden) as exc:
        gateway.require_admin(Participant("u1"), "lock slots")
    assert "administrators" in exc.value.message

    with pytest.raises(Forbidden) as exc:
        gateway.require_admin(Administrator("a3"), "lock slots")
    assert exc.value.context == {"admin_id": "a3"}


def test_authorize_view(gateway):
    gateway.authorize_view(Participant("u1"), is_member=True)
    gateway.authorize_view(Administrator("a1", frozenset({"room_slots"})), is_member=False)

    with pytest.raises(Forbidden):
        gateway.authorize_view(Participant("u1"), is_member=False)
    with pytest.raises(Forbidden):
        gateway.authorize_view(Administrator("a3"), is_member=False)


def test_authorize_move(gateway):
    gateway.authorize_move(Participant("u1"), "u1")
    gateway.authorize_move(Administrator("a1", frozenset({"room_slots"})), "u1")

    with pytest.raises(Forbidden):
        gateway.authorize_move(Participant("u1"), "u2")


def test_actor_identity():
    assert Participant("u1").identity == "u1"
    assert Administrator("a1").identity == "a1"
    assert Administrator("a1").is_admin and not Participant("u1").is_admin
