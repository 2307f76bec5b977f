"""
Unit Tests for the Session Guard
=================================

Tests for hub/auth/guard.py

Test Coverage:
--------------
1. Bootstrap from the shared store (valid, expired, revoked, missing)
2. Denied users are signed out and sent to the login screen
3. Forced credential change redirects at most once per mount
4. Mount-time and event-driven evaluation converge on one resolver run
5. Event handling after mount (sign-out, refresh, new sign-in)
"""

import asyncio

import httpx
import pytest

from hub.auth.client import AuthChangeEvent, Session
from hub.auth.guard import AuthContext, GuardState, SessionGuard
from hub.auth.resolver import VerdictKind

from conftest import STORAGE_KEY


def profile_reads(services):
    return services.calls_to("/rest/v1/profiles", method="GET")


# ============================================================================
# Bootstrap
# ============================================================================

@pytest.mark.asyncio
async def test_no_stored_session_is_unauthenticated(auth_client, resolver, services):
    async with SessionGuard(auth_client, resolver, current_path="/dashboard") as guard:
        context = guard.context

    assert context.state == GuardState.UNAUTHENTICATED
    assert context.error is None
    assert services.calls == []


@pytest.mark.asyncio
async def test_stored_session_of_member_is_authenticated(auth_client, resolver, services, store_session):
    user_id = services.add_user("anna@example.com", "Secret123", roles=["owner"])
    session = store_session(user_id)

    async with SessionGuard(auth_client, resolver, current_path="/dashboard") as guard:
        context = guard.context

    assert context.state == GuardState.AUTHENTICATED
    assert context.session == session
    assert context.user_id == user_id
    assert context.destination is None
    assert len(profile_reads(services)) == 1


@pytest.mark.asyncio
async def test_expired_session_is_refreshed_and_evaluated_once(auth_client, resolver, services, store):
    user_id = services.add_user("anna@example.com", "Secret123", roles=["owner"])
    expired = Session.from_token_response(services.issue_session(user_id, expires_in=-60))
    store.set(STORAGE_KEY, expired.to_storage())

    async with SessionGuard(auth_client, resolver) as guard:
        context = guard.context

    assert context.state == GuardState.AUTHENTICATED
    assert context.session.access_token != expired.access_token
    assert len(profile_reads(services)) == 1


@pytest.mark.asyncio
async def test_revoked_session_signs_out_with_session_expired(auth_client, resolver, services, store):
    user_id = services.add_user("anna@example.com", "Secret123", roles=["owner"])
    expired = Session.from_token_response(services.issue_session(user_id, expires_in=-60))
    store.set(STORAGE_KEY, expired.to_storage())
    services.refresh_tokens.clear()

    async with SessionGuard(auth_client, resolver) as guard:
        context = guard.context

    assert context.state == GuardState.UNAUTHENTICATED
    assert context.error == "session_expired"
    assert store.get(STORAGE_KEY) is None
    assert profile_reads(services) == []


@pytest.mark.asyncio
async def test_network_failure_during_bootstrap_keeps_session(auth_client, resolver, services, store):
    user_id = services.add_user("anna@example.com", "Secret123", roles=["owner"])
    expired = Session.from_token_response(services.issue_session(user_id, expires_in=-60))
    store.set(STORAGE_KEY, expired.to_storage())
    services.failures["/auth/v1/token"] = httpx.ConnectError("connection refused")

    async with SessionGuard(auth_client, resolver) as guard:
        context = guard.context

    assert context.state == GuardState.UNAUTHENTICATED
    assert context.error == "network_error"
    assert store.get(STORAGE_KEY) is not None


# ============================================================================
# Denial
# ============================================================================

@pytest.mark.asyncio
async def test_simplified_user_without_membership_is_signed_out(auth_client, resolver, services, store, store_session):
    user_id = services.add_user("jdoe@staff.example.com", "482915", account_type="simplified")
    store_session(user_id)

    async with SessionGuard(auth_client, resolver, current_path="/dashboard") as guard:
        context = guard.context

    assert context.state == GuardState.UNAUTHENTICATED
    assert context.error == "no_membership"
    assert context.destination == "/login?error=no_membership"
    assert context.verdict.kind == VerdictKind.DENY
    assert store.get(STORAGE_KEY) is None
    assert len(services.calls_to("/auth/v1/logout")) == 1


@pytest.mark.asyncio
async def test_inactive_user_is_signed_out(auth_client, resolver, services, store, store_session):
    user_id = services.add_user("anna@example.com", "Secret123", roles=["owner"], is_active=False)
    store_session(user_id)

    async with SessionGuard(auth_client, resolver) as guard:
        context = guard.context

    assert context.state == GuardState.UNAUTHENTICATED
    assert context.error == "inactive_account"
    assert store.get(STORAGE_KEY) is None


@pytest.mark.asyncio
async def test_sign_in_after_denial_is_denied_again(auth_client, resolver, services, store, store_session):
    user_id = services.add_user("jdoe@staff.example.com", "482915", account_type="simplified")
    store_session(user_id)

    async with SessionGuard(auth_client, resolver, current_path="/dashboard") as guard:
        assert guard.context.state == GuardState.UNAUTHENTICATED
        await auth_client.sign_in_with_password("jdoe@staff.example.com", "482915")
        context = guard.context

    assert context.state == GuardState.UNAUTHENTICATED
    assert context.error == "no_membership"
    assert store.get(STORAGE_KEY) is None
    assert len(services.calls_to("/auth/v1/logout")) == 2


# ============================================================================
# Forced credential change
# ============================================================================

@pytest.mark.asyncio
async def test_must_reset_redirects_at_most_once(auth_client, resolver, services, store_session):
    user_id = services.add_user("w1@staff.example.com", "482915", account_type="simplified", must_reset=True, roles=["worker"])
    session = store_session(user_id)

    async with SessionGuard(auth_client, resolver, current_path="/dashboard") as guard:
        await auth_client.events.emit(AuthChangeEvent.SIGNED_IN, session)
        await auth_client.refresh_session()
        await auth_client.events.emit(AuthChangeEvent.INITIAL_SESSION, session)
        context = guard.context

    assert context.state == GuardState.AUTHENTICATED_MUST_RESET
    assert guard.redirects == ["/change-password"]
    assert len(profile_reads(services)) == 1


@pytest.mark.asyncio
async def test_must_reset_keeps_pending_return_target(auth_client, resolver, services, store_session):
    user_id = services.add_user("w1@staff.example.com", "482915", account_type="simplified", must_reset=True, roles=["worker"])
    store_session(user_id)

    async with SessionGuard(
        auth_client, resolver, current_path="/login", return_to="https://app.example.com/jobs"
    ) as guard:
        context = guard.context

    assert context.destination == "/change-password?returnTo=https%3A%2F%2Fapp.example.com%2Fjobs"


@pytest.mark.asyncio
async def test_must_reset_on_change_password_screen_does_not_redirect(auth_client, resolver, services, store_session):
    user_id = services.add_user("w1@staff.example.com", "482915", account_type="simplified", must_reset=True, roles=["worker"])
    store_session(user_id)

    async with SessionGuard(auth_client, resolver, current_path="/change-password") as guard:
        context = guard.context

    assert context.state == GuardState.AUTHENTICATED_MUST_RESET
    assert context.destination is None
    assert guard.redirects == []


# ============================================================================
# Concurrency
# ============================================================================

@pytest.mark.asyncio
async def test_mount_and_sign_in_event_converge(auth_client, resolver, services, store_session):
    user_id = services.add_user("anna@example.com", "Secret123", roles=["owner"])
    session = store_session(user_id)
    guard = SessionGuard(auth_client, resolver)

    await asyncio.gather(
        guard.mount(),
        auth_client.events.emit(AuthChangeEvent.SIGNED_IN, session),
    )
    guard.unmount()

    assert guard.context.state == GuardState.AUTHENTICATED
    assert guard.context.session == session
    assert len(profile_reads(services)) == 1


@pytest.mark.asyncio
async def test_concurrent_evaluations_of_same_subject_run_resolver_once(auth_client, resolver, services, store_session):
    user_id = services.add_user("anna@example.com", "Secret123", roles=["owner"])
    session = store_session(user_id)
    guard = SessionGuard(auth_client, resolver)

    await asyncio.gather(guard.evaluate(session), guard.evaluate(session), guard.evaluate(session))

    assert len(profile_reads(services)) == 1


# ============================================================================
# Events after mount
# ============================================================================

@pytest.mark.asyncio
async def test_sign_out_event_clears_context(auth_client, resolver, services, store_session):
    user_id = services.add_user("anna@example.com", "Secret123", roles=["owner"])
    store_session(user_id)

    async with SessionGuard(auth_client, resolver, return_to="/dashboard") as guard:
        await auth_client.sign_out(local_only=True)
        context = guard.context

    assert context.state == GuardState.UNAUTHENTICATED
    assert context.session is None
    assert guard.return_to is None


@pytest.mark.asyncio
async def test_token_refresh_after_mount_only_updates_session(auth_client, resolver, services, store_session):
    user_id = services.add_user("anna@example.com", "Secret123", roles=["owner"])
    store_session(user_id)

    async with SessionGuard(auth_client, resolver) as guard:
        refreshed = await auth_client.refresh_session()
        context = guard.context

    assert context.session == refreshed
    assert len(profile_reads(services)) == 1


@pytest.mark.asyncio
async def test_sign_in_after_mount_is_evaluated(auth_client, resolver, services):
    user_id = services.add_user("anna@example.com", "Secret123", roles=["owner"])

    async with SessionGuard(auth_client, resolver) as guard:
        assert guard.context.state == GuardState.UNAUTHENTICATED
        await auth_client.sign_in_with_password("anna@example.com", "Secret123")
        context = guard.context

    assert context.state == GuardState.AUTHENTICATED
    assert context.user_id == user_id


@pytest.mark.asyncio
async def test_fleet_only_user_gets_external_destination(auth_client, resolver, services, store_session):
    user_id = services.add_user("driver@example.com", "Secret123")
    services.fleet_members.append({"user_id": user_id, "role": "driver"})
    store_session(user_id)

    async with SessionGuard(auth_client, resolver) as guard:
        context = guard.context

    assert context.state == GuardState.AUTHENTICATED
    assert context.destination == "https://fleet.example.com"


@pytest.mark.asyncio
async def test_directory_outage_adds_notice(auth_client, resolver, services, store_session):
    user_id = services.add_user("anna@example.com", "Secret123", roles=["owner"])
    store_session(user_id)
    services.failures["/rest/v1/memberships"] = (503, {"message": "unavailable"})

    async with SessionGuard(auth_client, resolver) as guard:
        context = guard.context

    assert context.state == GuardState.AUTHENTICATED
    assert context.notice == "directory_unavailable"


@pytest.mark.asyncio
async def test_unmount_unsubscribes(auth_client, resolver):
    async with SessionGuard(auth_client, resolver):
        assert auth_client.events.subscriber_count == 1

    assert auth_client.events.subscriber_count == 0


def test_context_is_immutable():
    context = AuthContext()

    with pytest.raises(AttributeError):
        context.state = GuardState.AUTHENTICATED

    assert context.evolve(state=GuardState.AUTHENTICATED).state == GuardState.AUTHENTICATED
    assert context.state == GuardState.INITIALIZING
