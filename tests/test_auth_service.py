import pytest

from rythmix.models import AccessToken, EmailVerificationToken, RefreshToken, User
from rythmix.services.auth_tokens import SplitToken, hash_verifier
from rythmix.services.errors import (
    ConflictError,
    EmailNotVerifiedError,
    InvalidCredentialsError,
    InvalidRefreshTokenError,
    InvalidVerificationTokenError,
    RefreshTokenExpiredError,
    ValidationError,
    VerificationTokenExpiredError,
)


def _register(service, email="alice@example.com", username="alice", password="Passw0rd!"):
    return service.register(email=email, username=username, password=password)


def _verified_login(service, mailer, **kwargs):
    user = _register(service, **kwargs)
    service.verify_email(mailer.last_token)
    return user, service.login(user.email, kwargs.get("password", "Passw0rd!"))


def test_register_creates_unverified_user_with_default_role(service, db, mailer):
    user = service.register(
        email="  Alice@Example.com ",
        username="alice",
        password="Passw0rd!",
        first_name="Alice",
        last_name="Liddell",
    )

    stored = db.query(User).filter(User.id == user.id).one()
    assert stored.email == "alice@example.com"
    assert stored.role == "user"
    assert stored.email_verified_at is None
    assert stored.hashed_password != "Passw0rd!"
    assert stored.full_name == "Alice Liddell"
    assert len(mailer.sent) == 1
    assert mailer.sent[0]["to"] == "alice@example.com"
    assert mailer.sent[0]["username"] == "alice"


def test_register_reports_every_taken_field(service, user_factory, db):
    user_factory("alice@example.com", "alice")

    with pytest.raises(ValidationError) as excinfo:
        _register(service)

    fields = {error["field"] for error in excinfo.value.errors}
    assert fields == {"email", "username"}
    assert all(error["rule"] == "unique" for error in excinfo.value.errors)


@pytest.mark.parametrize(
    ("overrides", "field", "rule"),
    [
        ({"email": "not-an-email"}, "email", "email"),
        ({"username": "ab"}, "username", "minLength"),
        ({"username": "  ab  "}, "username", "minLength"),
        ({"password": "short"}, "password", "minLength"),
    ],
)
def test_register_rejects_invalid_input(service, db, mailer, overrides, field, rule):
    with pytest.raises(ValidationError) as excinfo:
        _register(service, **overrides)

    assert [(error["field"], error["rule"]) for error in excinfo.value.errors] == [(field, rule)]
    assert db.query(User).count() == 0
    assert mailer.sent == []


def test_register_maps_storage_uniqueness_race_to_conflict(service, user_factory, db, clock):
    # A soft-deleted row still holds the email at the storage level.
    ghost = user_factory("alice@example.com", "ghost")
    ghost.deleted_at = clock()
    db.commit()

    with pytest.raises(ConflictError):
        _register(service)
    assert db.query(User).count() == 1


def test_register_survives_mail_transport_failure(service, db, mailer):
    mailer.fail = True

    user = _register(service)

    assert db.query(User).filter(User.id == user.id).count() == 1
    assert db.query(EmailVerificationToken).filter(EmailVerificationToken.user_id == user.id).count() == 1


def test_login_unknown_email_and_wrong_password_are_indistinguishable(service, user_factory, db):
    user_factory("bob@example.com", "bob", password="correct-horse")

    with pytest.raises(InvalidCredentialsError) as unknown:
        service.login("nobody@example.com", "correct-horse")
    with pytest.raises(InvalidCredentialsError) as wrong:
        service.login("bob@example.com", "wrong-password")

    assert type(unknown.value) is type(wrong.value)
    assert str(unknown.value) == str(wrong.value)


def test_login_rejects_unverified_email(service):
    _register(service)

    with pytest.raises(EmailNotVerifiedError):
        service.login("alice@example.com", "Passw0rd!")


def test_login_rejects_soft_deleted_user(service, user_factory, db, clock):
    user = user_factory("carol@example.com", "carol")
    user.deleted_at = clock()
    db.commit()

    with pytest.raises(InvalidCredentialsError):
        service.login("carol@example.com", "testpassword123")


def test_login_issues_access_and_refresh_tokens(service, db, mailer):
    user, pair = _verified_login(service, mailer)

    selector, verifier = pair.refresh_token.split(".")
    record = db.query(RefreshToken).filter(RefreshToken.selector == selector).one()
    assert record.user_id == user.id
    assert record.token_hash == hash_verifier(verifier)
    assert verifier not in record.token_hash
    assert len(selector) == 64 and len(verifier) == 64
    assert pair.access_expires_in == 15 * 60
    assert pair.refresh_expires_in == 7 * 24 * 60 * 60
    assert db.query(AccessToken).filter(AccessToken.user_id == user.id).count() == 1


def test_refresh_does_not_rotate_and_can_be_reused(service, mailer):
    _, pair = _verified_login(service, mailer)

    first = service.refresh(pair.refresh_token)
    second = service.refresh(pair.refresh_token)

    assert first != second
    assert service.access_tokens.verify(first) is not None
    assert service.access_tokens.verify(second) is not None


@pytest.mark.parametrize("raw", ["", "no-dot", "a.b.c", ".verifier", "selector."])
def test_refresh_rejects_malformed_token(service, raw):
    with pytest.raises(InvalidRefreshTokenError):
        service.refresh(raw)


def test_refresh_rejects_unknown_selector(service):
    with pytest.raises(InvalidRefreshTokenError):
        service.refresh(str(SplitToken.generate()))


def test_refresh_rejects_tampered_verifier(service, mailer):
    _, pair = _verified_login(service, mailer)
    selector, _ = pair.refresh_token.split(".")

    with pytest.raises(InvalidRefreshTokenError):
        service.refresh(f"{selector}.{'0' * 64}")


def test_expired_refresh_token_is_purged_on_use(service, db, mailer, clock):
    _, pair = _verified_login(service, mailer)
    clock.advance(days=7, seconds=1)

    with pytest.raises(RefreshTokenExpiredError):
        service.refresh(pair.refresh_token)
    assert db.query(RefreshToken).count() == 0

    with pytest.raises(InvalidRefreshTokenError):
        service.refresh(pair.refresh_token)


def test_refresh_rejects_token_of_soft_deleted_user(service, db, mailer, clock):
    user, pair = _verified_login(service, mailer)
    user.deleted_at = clock()
    db.commit()

    with pytest.raises(InvalidRefreshTokenError):
        service.refresh(pair.refresh_token)


def test_logout_revokes_access_token_and_given_refresh_token_only(service, db, mailer):
    user, first = _verified_login(service, mailer)
    second = service.login(user.email, "Passw0rd!")
    access = service.access_tokens.verify(first.access_token)

    service.logout(user, access.identifier, first.refresh_token)

    assert service.access_tokens.verify(first.access_token) is None
    assert service.access_tokens.verify(second.access_token) is not None
    with pytest.raises(InvalidRefreshTokenError):
        service.refresh(first.refresh_token)
    assert service.refresh(second.refresh_token)


def test_logout_is_idempotent_for_missing_or_malformed_refresh_token(service, mailer):
    user, pair = _verified_login(service, mailer)
    identifier = service.access_tokens.verify(pair.access_token).identifier

    service.logout(user, identifier, "not-a-token")
    service.logout(user, identifier, str(SplitToken.generate()))
    service.logout(user, identifier)

    assert service.access_tokens.verify(pair.access_token) is None


def test_logout_does_not_touch_refresh_tokens_of_other_users(service, db, mailer):
    alice, alice_pair = _verified_login(service, mailer)
    bob, bob_pair = _verified_login(service, mailer, email="bob@example.com", username="bob")
    access = service.access_tokens.verify(alice_pair.access_token)

    service.logout(alice, access.identifier, bob_pair.refresh_token)

    assert service.refresh(bob_pair.refresh_token)


def test_resend_verification_is_silent_for_unknown_and_verified_users(service, user_factory, db, mailer):
    user_factory("verified@example.com", "verified")

    assert service.resend_verification_email("nobody@example.com") is None
    assert service.resend_verification_email("verified@example.com") is None
    assert mailer.sent == []


def test_new_verification_token_supersedes_previous_one(service, db, mailer):
    user = _register(service)
    first = mailer.last_token

    service.resend_verification_email(user.email)
    second = mailer.last_token

    assert db.query(EmailVerificationToken).filter(EmailVerificationToken.user_id == user.id).count() == 1
    with pytest.raises(InvalidVerificationTokenError):
        service.verify_email(first)
    assert service.verify_email(second).email_verified_at is not None


def test_verify_email_sets_timestamp_once_and_consumes_token(service, db, mailer):
    user = _register(service)
    token = mailer.last_token

    verified = service.verify_email(token)

    assert verified.id == user.id
    assert verified.email_verified_at is not None
    assert db.query(EmailVerificationToken).count() == 0
    with pytest.raises(InvalidVerificationTokenError):
        service.verify_email(token)


def test_verify_email_rejects_tampered_verifier(service, mailer):
    _register(service)
    selector, _ = mailer.last_token.split(".")

    with pytest.raises(InvalidVerificationTokenError):
        service.verify_email(f"{selector}.{'f' * 64}")


def test_expired_verification_token_is_deleted(service, db, mailer, clock):
    _register(service)
    token = mailer.last_token
    clock.advance(hours=24, seconds=1)

    with pytest.raises(VerificationTokenExpiredError):
        service.verify_email(token)
    assert db.query(EmailVerificationToken).count() == 0
    with pytest.raises(InvalidVerificationTokenError):
        service.verify_email(token)


def test_revoke_all_refresh_tokens(service, db, mailer):
    user, first = _verified_login(service, mailer)
    second = service.login(user.email, "Passw0rd!")

    assert service.revoke_all_refresh_tokens(user.id) == 2

    for pair in (first, second):
        with pytest.raises(InvalidRefreshTokenError):
            service.refresh(pair.refresh_token)


def test_clean_expired_tokens_only_removes_expired_refresh_tokens(service, db, mailer, clock):
    user, _ = _verified_login(service, mailer)
    clock.advance(days=3)
    service.login(user.email, "Passw0rd!")
    clock.advance(days=5)

    assert service.clean_expired_tokens() == 1
    assert db.query(RefreshToken).count() == 1
    assert service.clean_expired_tokens() == 0


def test_clean_expired_verification_and_access_tokens(service, user_factory, db, mailer, clock):
    _register(service)
    user_factory("dave@example.com", "dave")
    service.login("dave@example.com", "testpassword123")
    clock.advance(days=2)

    assert service.clean_expired_verification_tokens() == 1
    assert service.clean_expired_access_tokens() == 1
    assert db.query(AccessToken).count() == 0


def test_deleting_user_cascades_to_tokens(service, db, mailer):
    user, _ = _verified_login(service, mailer)

    db.delete(user)
    db.commit()

    assert db.query(RefreshToken).count() == 0
    assert db.query(AccessToken).count() == 0
