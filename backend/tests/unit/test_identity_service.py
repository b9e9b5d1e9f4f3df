from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import pytest

from chatline.domain.common.errors import ConflictError, NotFoundError, ValidationError
from chatline.domain.identity import mailer
from chatline.domain.identity.repo import get_repository as get_user_repository
from chatline.domain.identity.schemas import LoginRequest, RegisterRequest
from chatline.domain.identity.service import IdentityService, InvalidCredentials
from chatline.domain.status import sockets as status_sockets
from chatline.infra import jwt as jwt_helper
from chatline.infra.auth import AuthenticatedUser
from chatline.settings import settings


@pytest.fixture
def refreshes(monkeypatch):
    calls = []

    async def _refresh(user_ids, payload):
        calls.append((list(user_ids), payload))

    monkeypatch.setattr(status_sockets, "emit_feed_refresh", _refresh)
    return calls


@pytest.fixture
def outbox(monkeypatch):
    sent = []

    async def _send(email, link):
        sent.append((email, link))
        return True

    monkeypatch.setattr(mailer, "send_password_reset", _send)
    return sent


def _auth(user) -> AuthenticatedUser:
    return AuthenticatedUser(id=user.id, username=getattr(user, "username", None))


async def _register(service, username="alice", password="secret-pw"):
    return await service.register(
        RegisterRequest(username=username, email=f"{username}@Example.com", password=password)
    )


@pytest.mark.asyncio
async def test_register_and_login_by_email_or_username():
    service = IdentityService()
    summary = await _register(service)

    assert summary.name == "alice"
    assert summary.email == "alice@example.com"

    by_email = await service.login(LoginRequest(email="ALICE@example.com ", password="secret-pw"))
    by_name = await service.login(LoginRequest(email="alice", password="secret-pw"))

    assert by_email.user.id == summary.id
    assert by_name.user.id == summary.id
    claims = jwt_helper.decode_access(by_email.token)
    assert claims["sub"] == summary.id
    assert claims["username"] == "alice"


@pytest.mark.asyncio
async def test_register_rejects_duplicates_and_bad_usernames():
    service = IdentityService()
    await _register(service)

    with pytest.raises(ConflictError) as duplicate:
        await _register(service)
    assert duplicate.value.reason == "user_exists"

    with pytest.raises(ValidationError):
        await service.register(RegisterRequest(username="bad name", email="x@example.com", password="secret-pw"))


@pytest.mark.asyncio
async def test_login_rejects_wrong_password_and_unknown_user():
    service = IdentityService()
    await _register(service)

    with pytest.raises(InvalidCredentials):
        await service.login(LoginRequest(email="alice", password="wrong-pw"))
    with pytest.raises(InvalidCredentials):
        await service.login(LoginRequest(email="nobody", password="secret-pw"))


@pytest.mark.asyncio
async def test_block_tears_down_relations_and_unblock(refreshes, make_user, befriend):
    service = IdentityService()
    alice = await make_user("alice")
    bob = await make_user("bob")
    await befriend(alice, bob)

    await service.block(_auth(alice), bob.id)

    users = get_user_repository()
    stored_alice = await users.get(alice.id)
    stored_bob = await users.get(bob.id)
    assert stored_alice.friends == []
    assert stored_bob.friends == []
    assert stored_alice.blocked_users == [bob.id]
    assert stored_bob.blocked_by == [alice.id]
    assert [u.id for u in await service.blocked_users(_auth(alice))] == [bob.id]
    assert await service.list_users(_auth(alice)) == []
    assert refreshes == [([alice.id, bob.id], {"reason": "user_blocked"})]

    with pytest.raises(ConflictError):
        await service.block(_auth(alice), bob.id)
    with pytest.raises(ValidationError):
        await service.block(_auth(alice), alice.id)

    await service.unblock(_auth(alice), bob.id)
    assert (await users.get(bob.id)).blocked_by == []
    assert [u.id for u in await service.list_users(_auth(alice))] == [bob.id]
    with pytest.raises(NotFoundError):
        await service.unblock(_auth(alice), bob.id)


@pytest.mark.asyncio
async def test_password_reset_round_trip(outbox):
    service = IdentityService()
    await _register(service)

    await service.request_password_reset("alice@example.com")

    assert len(outbox) == 1
    email, link = outbox[0]
    assert email == "alice@example.com"
    token = parse_qs(urlparse(link).query)["token"][0]

    await service.reset_password(token, "brand-new-pw")
    login = await service.login(LoginRequest(email="alice", password="brand-new-pw"))
    assert login.user.name == "alice"

    with pytest.raises(ValidationError) as reused:
        await service.reset_password(token, "another-pw")
    assert reused.value.reason == "invalid_token"


@pytest.mark.asyncio
async def test_password_reset_unknown_email_is_silent(outbox):
    service = IdentityService()

    await service.request_password_reset("ghost@example.com")

    assert outbox == []


@pytest.mark.asyncio
async def test_password_reset_expired_token(outbox):
    service = IdentityService()
    summary = await _register(service)
    await service.request_password_reset("alice@example.com")
    token = parse_qs(urlparse(outbox[0][1]).query)["token"][0]
    await get_user_repository().update_fields(
        summary.id, {"reset_expires_at": datetime.now(timezone.utc) - timedelta(minutes=1)}
    )

    with pytest.raises(ValidationError):
        await service.reset_password(token, "brand-new-pw")


def test_mask_email_hides_address():
    masked = mailer.mask_email("Alice@Example.com")
    assert masked == mailer.mask_email("alice@example.com")
    assert "alice" not in masked
    assert len(masked) == 12


@pytest.mark.asyncio
async def test_password_reset_mail_skipped_without_smtp(monkeypatch):
    monkeypatch.setattr(settings, "smtp_host", "")
    assert await mailer.send_password_reset("alice@example.com", "http://x/reset?token=t") is False


@pytest.mark.asyncio
async def test_password_reset_mail_carries_text_and_html(monkeypatch):
    delivered = []

    async def _send(msg, **kwargs):
        delivered.append((msg, kwargs))

    monkeypatch.setattr(settings, "smtp_host", "smtp.example.com")
    monkeypatch.setattr(settings, "smtp_port", 587)
    monkeypatch.setattr(settings, "smtp_tls", True)
    monkeypatch.setattr(mailer.aiosmtplib, "send", _send)

    assert await mailer.send_password_reset("alice@example.com", "http://x/reset?token=t") is True
    msg, kwargs = delivered[0]
    assert kwargs["start_tls"] is True and kwargs["use_tls"] is False
    assert msg.get_content_type() == "multipart/alternative"
    assert "http://x/reset?token=t" in msg.get_body(preferencelist=("plain",)).get_content()
