from datetime import timedelta

import pytest

from conftest import DEFAULT_PASSWORD, create_account
from marketplace.errors import (
    AccountNotFound,
    Conflict,
    InvalidCredentials,
    TokenExpired,
    TokenInvalid,
    ValidationError,
)
from marketplace.models import Account, AccountRole
from marketplace.services.auth_service import AuthService


@pytest.fixture
def auth(app, db_session, mailer):
    with app.app_context():
        yield AuthService(db_session, mailer=mailer)


def test_login_token_round_trip_preserves_id_and_role(auth, db_session):
    admin = create_account(db_session, "root_admin", role=AccountRole.ADMIN)

    account, token = auth.login("root_admin", DEFAULT_PASSWORD)
    authenticated, claims = auth.authenticate(token)

    assert account.accountID == admin.accountID
    assert authenticated.accountID == admin.accountID
    assert claims["account_id"] == admin.accountID
    assert claims["role"] == "admin"


def test_login_rejects_unknown_user_and_wrong_password_the_same_way(auth, db_session):
    create_account(db_session, "alice")

    with pytest.raises(InvalidCredentials) as unknown:
        auth.login("nobody", DEFAULT_PASSWORD)
    with pytest.raises(InvalidCredentials) as wrong:
        auth.login("alice", "not-the-password")

    assert unknown.value.message == wrong.value.message


def test_login_does_not_modify_the_account(auth, db_session):
    account = create_account(db_session, "alice")
    before = (account.passwordHash, account.updated_at, account.is_verified)

    auth.login("alice", DEFAULT_PASSWORD)
    db_session.expire_all()
    reloaded = db_session.get(Account, account.accountID)

    assert (reloaded.passwordHash, reloaded.updated_at, reloaded.is_verified) == before


def test_expired_token_reports_expired_not_invalid(auth, db_session):
    account = create_account(db_session, "alice")
    token = auth.issue_token(account, expires_delta=timedelta(seconds=-30))

    with pytest.raises(TokenExpired):
        auth.authenticate(token)


def test_malformed_and_tampered_tokens_are_invalid(auth, db_session):
    account = create_account(db_session, "alice")
    token = auth.issue_token(account)
    header, payload, signature = token.split(".")
    tampered = ".".join([header, payload, signature[::-1]])

    with pytest.raises(TokenInvalid):
        auth.authenticate("not-a-jwt")
    with pytest.raises(TokenInvalid):
        auth.authenticate(tampered)
    with pytest.raises(TokenInvalid):
        auth.authenticate(None)


def test_token_for_deleted_account_reports_account_not_found(auth, db_session):
    account = create_account(db_session, "ghost")
    token = auth.issue_token(account)
    db_session.delete(account)
    db_session.commit()

    with pytest.raises(AccountNotFound):
        auth.authenticate(token)


def test_register_stores_hash_and_sends_verification(auth, db_session, mailer):
    account = auth.register("newbie", "Newbie@Example.com", "longenough", full_name="New Bie")

    assert account.email == "newbie@example.com"
    assert account.passwordHash != "longenough"
    assert account.role == AccountRole.USER
    assert account.is_verified is False
    assert account.verification_token
    assert mailer.sent[0][0] == "verification"
    assert account.verification_token in mailer.sent[0][2]


def test_register_duplicate_username_or_email_conflicts(auth, db_session):
    create_account(db_session, "taken", email="taken@example.com")

    with pytest.raises(Conflict):
        auth.register("taken", "other@example.com", "longenough")
    with pytest.raises(Conflict):
        auth.register("fresh", "TAKEN@example.com", "longenough")


def test_register_validates_input(auth):
    with pytest.raises(ValidationError):
        auth.register("", "a@example.com", "longenough")
    with pytest.raises(ValidationError):
        auth.register("shorty", "shorty@example.com", "12345")
    with pytest.raises(ValidationError):
        auth.register("bademail", "not-an-email", "longenough")


def test_verify_email_consumes_token(auth, db_session):
    account = auth.register("verifyme", "verifyme@example.com", "longenough")
    token = account.verification_token

    verified = auth.verify_email(token)

    assert verified.is_verified is True
    assert verified.verification_token is None
    with pytest.raises(ValidationError):
        auth.verify_email(token)


def test_password_reset_flow(auth, db_session, mailer):
    create_account(db_session, "forgetful", email="forgetful@example.com")

    auth.request_password_reset("forgetful@example.com")
    kind, recipient, link = mailer.sent[-1]
    token = link.split("token=")[1]
    auth.reset_password(token, "brand-new-pass")

    account, _ = auth.login("forgetful", "brand-new-pass")
    assert account.username == "forgetful"
    assert kind == "reset" and recipient == "forgetful@example.com"
    with pytest.raises(ValidationError):
        auth.reset_password(token, "another-pass")


def test_password_reset_for_unknown_email_is_silent(auth, mailer):
    auth.request_password_reset("nobody@example.com")
    assert mailer.sent == []


def test_bootstrap_admin_is_created_once(auth, db_session):
    first = auth.ensure_bootstrap_admin("superadmin", "bootstrap-pass", "super@example.com")
    second = auth.ensure_bootstrap_admin("superadmin", "bootstrap-pass", "super@example.com")

    assert first.accountID == second.accountID
    assert first.is_admin
    assert db_session.query(Account).filter_by(username="superadmin").count() == 1
