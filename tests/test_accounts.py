import pytest

from errors import AuthError, ConflictError, ValidationError
from tests.helpers import client_hash


def test_register_stores_hashed_password(accounts, clock):
    password = client_hash("secret")
    user = accounts.register("alice", password, clock.ms)
    assert user.passwordHash != password
    assert accounts.get_user("alice").createdAt == clock.ms


def test_register_twice_conflicts(accounts, clock):
    accounts.register("alice", client_hash("secret"), clock.ms)
    with pytest.raises(ConflictError):
        accounts.register("alice", client_hash("other"), clock.ms)


def test_login(accounts, clock):
    accounts.register("alice", client_hash("secret"), clock.ms)
    clock.advance(30)
    user = accounts.login("alice", client_hash("secret"), clock.ms)
    assert user.lastActive == clock.ms
    with pytest.raises(AuthError):
        accounts.login("alice", client_hash("wrong"), clock.ms)
    with pytest.raises(AuthError):
        accounts.login("nobody", client_hash("secret"), clock.ms)


def test_authenticate_registers_then_verifies(accounts, clock):
    _, created = accounts.authenticate("alice", client_hash("secret"), clock.ms)
    assert created
    _, created = accounts.authenticate("alice", client_hash("secret"), clock.ms)
    assert not created
    with pytest.raises(AuthError):
        accounts.authenticate("alice", client_hash("wrong"), clock.ms)


@pytest.mark.parametrize("username", ["a", "x" * 21, "bad name", "al~ce", "alice!", "", "alice\n"])
def test_invalid_usernames_rejected(accounts, clock, username):
    with pytest.raises(ValidationError):
        accounts.register(username, client_hash("secret"), clock.ms)


def test_short_password_rejected(accounts, clock):
    with pytest.raises(ValidationError):
        accounts.register("alice", "plaintext", clock.ms)
    assert accounts.get_user("alice") is None
