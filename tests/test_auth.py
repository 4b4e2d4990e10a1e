import pytest

from parsemybill.auth.gate import ANONYMOUS, AuthGate
from parsemybill.errors import AuthenticationError, ValidationError


def test_signup_then_login_issues_distinct_sessions(gate):
    created = gate.signup("Alice@Example.com ", "secret123")
    logged_in = gate.login("alice@example.com", "secret123")

    assert created.is_authenticated
    assert created.email == "alice@example.com"
    assert logged_in.user_id == created.user_id
    assert logged_in.token != created.token
    assert gate.resolve(logged_in.token) == logged_in


def test_wrong_password_and_unknown_user_are_rejected(gate):
    gate.signup("bob@example.com", "secret123")
    with pytest.raises(AuthenticationError):
        gate.login("bob@example.com", "wrong-password")
    with pytest.raises(AuthenticationError):
        gate.login("nobody@example.com", "secret123")


def test_signup_validation(gate):
    with pytest.raises(ValidationError):
        gate.signup("not-an-email", "secret123")
    with pytest.raises(ValidationError):
        gate.signup("carol@example.com", "123")
    gate.signup("carol@example.com", "secret123")
    with pytest.raises(ValidationError):
        gate.signup("CAROL@example.com", "another-secret")


def test_logout_invalidates_token(gate):
    session = gate.signup("dave@example.com", "secret123")

    assert gate.logout(session) is ANONYMOUS
    with pytest.raises(AuthenticationError):
        gate.resolve(session.token)
    with pytest.raises(AuthenticationError):
        gate.resolve(None)


def test_require_rejects_anonymous():
    with pytest.raises(AuthenticationError):
        AuthGate.require(ANONYMOUS)
    with pytest.raises(AuthenticationError):
        AuthGate.require(None)


def test_passwords_are_stored_as_bcrypt_hashes(gate):
    session = gate.signup("erin@example.com", "secret123")

    with gate.provider.db.connect() as conn:
        row = conn.execute("SELECT * FROM users WHERE user_id = ?;", (session.user_id,)).fetchone()

    assert row["password_hash"].startswith("$2")
    assert "secret123" not in row["password_hash"]
    assert "password_salt" not in row.keys()


def test_overlong_password_is_rejected(gate):
    with pytest.raises(ValidationError):
        gate.signup("frank@example.com", "x" * 73)
    assert gate.provider.verify("frank@example.com", "x" * 73) is None
