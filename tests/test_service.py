"""
Tests for the auth service: login, identity login, refresh, logout,
request verification, and authorization.
"""

from datetime import timedelta

import pytest

import elitefit.auth.service as service_module
from elitefit.auth.errors import (
    AccountInactiveError,
    AccountLockedError,
    ForbiddenError,
    IdentityProfileIncompleteError,
    InvalidCredentialsError,
    PrincipalKindMismatchError,
    ProviderUnavailableError,
    TokenExpiredError,
    TokenRevokedError,
    UnauthenticatedError,
)
from elitefit.auth.lockout import LockoutTracker
from elitefit.auth.passwords import hash_password
from elitefit.auth.policies import (
    require_ownership,
    require_permission,
    require_principal_kind,
    require_role,
)
from elitefit.auth.revocation import InMemoryRevocationRegistry
from elitefit.auth.service import AuthService
from elitefit.auth.tokens import TokenCodec
from elitefit.config import OAuthConfig, ProviderConfig
from elitefit.core.models import ExternalProfile, Principal, PrincipalKind, Role, TokenType
from elitefit.core.utils import utc_now
from elitefit.storage import DuplicatePrincipalError, InMemoryPrincipalStore

SECRET = "test-secret-key-for-service"
PASSWORD = "correct-horse-battery"


class FakeClock:
    def __init__(self):
        self.now = utc_now()

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class BrokenRegistry(InMemoryRevocationRegistry):
    async def is_revoked(self, jti):
        raise ConnectionError("cache unreachable")

    async def revoke(self, jti, expires_at):
        raise ConnectionError("cache unreachable")


class BrokenTracker(LockoutTracker):
    async def is_locked(self, principal_id, now=None):
        raise ConnectionError("lock table unreachable")


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryPrincipalStore()


@pytest.fixture
def oauth_config():
    return OAuthConfig(providers={
        "google": ProviderConfig(provider="google", client_id="gid", client_secret="gsecret"),
        "facebook": ProviderConfig(provider="facebook"),
    })


@pytest.fixture
def auth(store, clock, oauth_config):
    return AuthService(store, TokenCodec(SECRET), oauth=oauth_config, clock=clock)


async def seed_member(store, email="member@elitefit.com", **fields) -> Principal:
    return await store.create(Principal(
        id=fields.pop("id", "cli_member"),
        kind=PrincipalKind.CLIENT,
        email=email,
        password_hash=hash_password(PASSWORD),
        **fields,
    ))


async def seed_user(store, role=Role.STAFF, **fields) -> Principal:
    return await store.create(Principal(
        id=fields.pop("id", f"usr_{role.value}"),
        kind=PrincipalKind.USER,
        email=f"{role.value}@elitefit.com",
        password_hash=hash_password(PASSWORD),
        role=role,
        **fields,
    ))


# =============================================================================
# Password Login
# =============================================================================


class TestLogin:
    @pytest.mark.asyncio
    async def test_success(self, auth, store, clock):
        await seed_member(store)

        pair = await auth.login("Member@Elitefit.com", PASSWORD)

        payload = auth.codec.verify(pair.access_token)
        assert payload.sub == "cli_member"
        assert payload.kind == PrincipalKind.CLIENT
        assert (await store.find_by_id("cli_member")).last_login == clock()

    @pytest.mark.asyncio
    async def test_kinds_are_separate(self, auth, store):
        await seed_user(store, Role.ADMIN)

        with pytest.raises(InvalidCredentialsError):
            await auth.login("admin@elitefit.com", PASSWORD, PrincipalKind.CLIENT)

        pair = await auth.login("admin@elitefit.com", PASSWORD, PrincipalKind.USER)
        assert auth.codec.verify(pair.access_token).role == Role.ADMIN

    @pytest.mark.asyncio
    async def test_unknown_email_and_wrong_password_look_alike(self, auth, store):
        await seed_member(store)

        with pytest.raises(InvalidCredentialsError) as unknown:
            await auth.login("nobody@elitefit.com", PASSWORD)
        with pytest.raises(InvalidCredentialsError) as wrong:
            await auth.login("member@elitefit.com", "wrong-password")

        assert unknown.value.message == wrong.value.message

    @pytest.mark.asyncio
    async def test_fifth_failure_locks(self, auth, store):
        await seed_member(store)

        for _ in range(5):
            with pytest.raises(InvalidCredentialsError):
                await auth.login("member@elitefit.com", "wrong-password")

        stored = await store.find_by_id("cli_member")
        assert stored.failed_attempts == 5
        assert stored.locked_until is not None

    @pytest.mark.asyncio
    async def test_locked_account_skips_password_check(self, auth, store, monkeypatch):
        await seed_member(store)
        for _ in range(5):
            with pytest.raises(InvalidCredentialsError):
                await auth.login("member@elitefit.com", "wrong-password")

        calls = []

        def spy(password, password_hash):
            calls.append(password)
            return True

        monkeypatch.setattr(service_module, "verify_password", spy)

        with pytest.raises(AccountLockedError):
            await auth.login("member@elitefit.com", PASSWORD)
        assert calls == []

    @pytest.mark.asyncio
    async def test_lock_expires(self, auth, store, clock):
        await seed_member(store)
        for _ in range(5):
            with pytest.raises(InvalidCredentialsError):
                await auth.login("member@elitefit.com", "wrong-password")

        clock.advance(minutes=31)
        await auth.login("member@elitefit.com", PASSWORD)

        stored = await store.find_by_id("cli_member")
        assert stored.failed_attempts == 0
        assert stored.locked_until is None

    @pytest.mark.asyncio
    async def test_success_resets_counter(self, auth, store):
        await seed_member(store)
        for _ in range(3):
            with pytest.raises(InvalidCredentialsError):
                await auth.login("member@elitefit.com", "wrong-password")

        await auth.login("member@elitefit.com", PASSWORD)

        assert (await auth.lockout.get("cli_member")).failed_attempts == 0
        assert (await store.find_by_id("cli_member")).failed_attempts == 0

    @pytest.mark.asyncio
    async def test_inactive(self, auth, store):
        await seed_member(store, is_active=False)

        with pytest.raises(AccountInactiveError):
            await auth.login("member@elitefit.com", PASSWORD)

    @pytest.mark.asyncio
    async def test_lockout_lookup_fails_closed(self, store, clock):
        auth = AuthService(store, TokenCodec(SECRET), lockout=BrokenTracker(clock=clock), clock=clock)
        await seed_member(store)

        with pytest.raises(AccountLockedError):
            await auth.login("member@elitefit.com", PASSWORD)


class TestRegisterAndPassword:
    @pytest.mark.asyncio
    async def test_register(self, auth):
        principal, pair = await auth.register("new@elitefit.com", PASSWORD, "New", "Member")

        assert principal.kind == PrincipalKind.CLIENT
        assert principal.full_name == "New Member"
        assert auth.codec.verify(pair.access_token).sub == principal.id

    @pytest.mark.asyncio
    async def test_duplicate_email(self, auth):
        await auth.register("new@elitefit.com", PASSWORD)

        with pytest.raises(DuplicatePrincipalError):
            await auth.register("NEW@elitefit.com", PASSWORD)

    @pytest.mark.asyncio
    async def test_change_password(self, auth, store):
        await seed_member(store)

        await auth.change_password("cli_member", PASSWORD, "a-brand-new-password")

        await auth.login("member@elitefit.com", "a-brand-new-password")
        with pytest.raises(InvalidCredentialsError):
            await auth.login("member@elitefit.com", PASSWORD)

    @pytest.mark.asyncio
    async def test_change_password_wrong_current(self, auth, store):
        await seed_member(store)

        with pytest.raises(InvalidCredentialsError):
            await auth.change_password("cli_member", "wrong-password", "a-brand-new-password")


# =============================================================================
# External Identity Login
# =============================================================================


class TestIdentityLogin:
    @pytest.mark.asyncio
    async def test_links_and_issues(self, auth, store):
        await seed_member(store, email="a@x.com")

        pair = await auth.login_with_identity("google", ExternalProfile(id="g-1", email="a@x.com"))

        assert auth.codec.verify(pair.access_token).sub == "cli_member"

    @pytest.mark.asyncio
    async def test_unconfigured_provider(self, auth):
        with pytest.raises(ProviderUnavailableError):
            await auth.login_with_identity("facebook", ExternalProfile(id="fb-1", email="a@x.com"))

    @pytest.mark.asyncio
    async def test_incomplete_profile(self, auth):
        with pytest.raises(IdentityProfileIncompleteError):
            await auth.login_with_identity("google", ExternalProfile(id="g-1"))

    @pytest.mark.asyncio
    async def test_inactive_member(self, auth, store):
        await seed_member(store, email="a@x.com", is_active=False)

        with pytest.raises(AccountInactiveError):
            await auth.login_with_identity("google", ExternalProfile(id="g-1", email="a@x.com"))

    def test_available_providers(self, auth):
        assert auth.available_providers() == ["google"]


# =============================================================================
# Refresh / Logout
# =============================================================================


class TestRefresh:
    @pytest.mark.asyncio
    async def test_new_access_token(self, auth, store):
        await seed_member(store)
        pair = await auth.login("member@elitefit.com", PASSWORD)

        fresh = await auth.refresh(pair.refresh_token)

        payload = auth.codec.verify(fresh.access_token)
        assert payload.sub == "cli_member"
        assert payload.jti != auth.codec.verify(pair.access_token).jti

    @pytest.mark.asyncio
    async def test_reflects_current_role(self, auth, store):
        user = await seed_user(store, Role.STAFF)
        pair = await auth.login("staff@elitefit.com", PASSWORD, PrincipalKind.USER)

        user.role = Role.ADMIN
        await store.update(user)
        fresh = await auth.refresh(pair.refresh_token)

        assert auth.codec.verify(fresh.access_token).role == Role.ADMIN

    @pytest.mark.asyncio
    async def test_revoked_refresh(self, auth, store):
        await seed_member(store)
        pair = await auth.login("member@elitefit.com", PASSWORD)
        await auth.logout(pair.access_token, pair.refresh_token)

        with pytest.raises(TokenRevokedError):
            await auth.refresh(pair.refresh_token)

    @pytest.mark.asyncio
    async def test_deactivated_since_issue(self, auth, store):
        member = await seed_member(store)
        pair = await auth.login("member@elitefit.com", PASSWORD)

        member.is_active = False
        await store.update(member)

        with pytest.raises(AccountInactiveError):
            await auth.refresh(pair.refresh_token)

    @pytest.mark.asyncio
    async def test_expired_refresh(self, store):
        past = utc_now() - timedelta(days=8)
        member = await seed_member(store)
        token = TokenCodec(SECRET, clock=lambda: past).issue(member).refresh_token
        auth = AuthService(store, TokenCodec(SECRET))

        with pytest.raises(TokenExpiredError):
            await auth.refresh(token)


class TestLogout:
    @pytest.mark.asyncio
    async def test_revokes_both_tokens(self, auth, store):
        await seed_member(store)
        pair = await auth.login("member@elitefit.com", PASSWORD)

        await auth.logout(pair.access_token, pair.refresh_token)

        access = auth.codec.verify(pair.access_token)
        refresh = auth.codec.verify(pair.refresh_token, TokenType.REFRESH)
        assert await auth.revocations.is_revoked(access.jti)
        assert await auth.revocations.is_revoked(refresh.jti)

    @pytest.mark.asyncio
    async def test_always_succeeds(self, auth):
        await auth.logout("garbage", "more-garbage")
        await auth.logout(None)

    @pytest.mark.asyncio
    async def test_registry_failure_does_not_raise(self, store):
        auth = AuthService(store, TokenCodec(SECRET), revocations=BrokenRegistry())
        member = await seed_member(store)
        pair = auth.codec.issue(member)

        await auth.logout(pair.access_token, pair.refresh_token)


# =============================================================================
# Protected Requests
# =============================================================================


class TestVerifyRequest:
    @pytest.mark.asyncio
    async def test_resolves_principal(self, auth, store):
        await seed_member(store)
        pair = await auth.login("member@elitefit.com", PASSWORD)

        principal = await auth.verify_request(pair.access_token)

        assert principal.id == "cli_member"

    @pytest.mark.asyncio
    async def test_missing_token(self, auth):
        with pytest.raises(UnauthenticatedError):
            await auth.verify_request(None)

    @pytest.mark.asyncio
    async def test_revoked(self, auth, store):
        await seed_member(store)
        pair = await auth.login("member@elitefit.com", PASSWORD)
        await auth.logout(pair.access_token)

        with pytest.raises(UnauthenticatedError):
            await auth.verify_request(pair.access_token)

    @pytest.mark.asyncio
    async def test_bad_token_cause_is_chained(self, auth):
        with pytest.raises(UnauthenticatedError) as exc:
            await auth.verify_request("garbage")

        assert exc.value.__cause__ is not None

    @pytest.mark.asyncio
    async def test_refresh_token_is_not_a_bearer(self, auth, store):
        await seed_member(store)
        pair = await auth.login("member@elitefit.com", PASSWORD)

        with pytest.raises(UnauthenticatedError):
            await auth.verify_request(pair.refresh_token)

    @pytest.mark.asyncio
    async def test_revocation_lookup_fails_closed(self, store):
        auth = AuthService(store, TokenCodec(SECRET), revocations=BrokenRegistry())
        member = await seed_member(store)
        token = auth.codec.issue(member).access_token

        with pytest.raises(UnauthenticatedError):
            await auth.verify_request(token)

    @pytest.mark.asyncio
    async def test_shared_registry_starts_empty(self, store, oauth_config):
        shared = InMemoryRevocationRegistry()
        web = AuthService(store, TokenCodec(SECRET), revocations=shared, oauth=oauth_config)
        api = AuthService(store, TokenCodec(SECRET), revocations=shared, oauth=oauth_config)
        await seed_member(store)
        pair = await web.login("member@elitefit.com", PASSWORD)

        await web.logout(pair.access_token)

        assert web.revocations is shared
        assert len(shared) == 1
        with pytest.raises(UnauthenticatedError):
            await api.verify_request(pair.access_token)


class TestAuthorize:
    @pytest.mark.asyncio
    async def test_allowed(self, auth, store):
        staff = await seed_user(store, Role.STAFF)

        ctx = auth.authorize(staff, require_permission("view_clients"))

        assert ctx.principal_id == staff.id

    @pytest.mark.asyncio
    async def test_forbidden(self, auth, store):
        member = await seed_member(store)

        with pytest.raises(ForbiddenError):
            auth.authorize(member, require_role(Role.STAFF))

    @pytest.mark.asyncio
    async def test_override_grants(self, auth, store):
        staff = await seed_user(store, Role.STAFF, permissions={"manage_clients": True})

        auth.authorize(staff, require_permission("manage_clients"))

    @pytest.mark.asyncio
    async def test_ownership(self, auth, store):
        member = await seed_member(store)
        admin = await seed_user(store, Role.ADMIN)

        auth.authorize(member, require_ownership("cli_member"))
        auth.authorize(admin, require_ownership("cli_member"))
        with pytest.raises(ForbiddenError):
            auth.authorize(member, require_ownership("cli_someone_else"))

    @pytest.mark.asyncio
    async def test_kind_mismatch_has_its_own_code(self, auth, store):
        member = await seed_member(store)
        staff = await seed_user(store, Role.STAFF)

        auth.authorize(staff, require_principal_kind(PrincipalKind.USER))
        with pytest.raises(PrincipalKindMismatchError) as exc:
            auth.authorize(member, require_principal_kind(PrincipalKind.USER))

        assert exc.value.code == "USER_TYPE_MISMATCH"
        assert exc.value.status_code == 403


# =============================================================================
# Housekeeping
# =============================================================================


class TestHousekeeping:
    @pytest.mark.asyncio
    async def test_purges(self, auth, store, clock):
        member = await seed_member(store)
        await auth.revocations.revoke("old-jti", clock() + timedelta(minutes=1))
        await auth.lockout.record_failure(member.id)

        clock.advance(hours=2)
        purged = await auth.housekeeping()

        assert purged == {"revocations": 1, "lockouts": 1}

    @pytest.mark.asyncio
    async def test_token_info(self, auth, store):
        member = await seed_member(store)
        token = auth.codec.issue(member).access_token

        info = auth.token_info(token)

        assert info["expiring_soon"] is False
        assert info["expires_at"] > info["issued_at"]
        assert auth.token_info("garbage") is None
