import asyncio
from dataclasses import replace

from jai_core.domain.exceptions import ApiError, NetworkError, RateLimitError
from jai_core.domain.models import AuthUser
from jai_core.session.verification import (
    NOT_YET_VERIFIED,
    RESEND_FAILED,
    RESEND_OK,
    RESEND_RATE_LIMITED,
    VerificationFlow,
    VerificationState,
)

USER = AuthUser(uid="u1", email="alice@example.com", email_verified=False, provider_ids=("password",))


class IdentityStub:
    def __init__(self, user=USER, send_error=None, reload_results=None):
        self.user = user
        self.send_error = send_error
        self.reload_results = list(reload_results or [])
        self.sent = 0
        self.signed_out = False

    def get_current_user(self):
        return self.user

    async def send_verification_email(self, user):
        self.sent += 1
        if self.send_error is not None:
            raise self.send_error

    async def reload_user(self, user):
        result = self.reload_results.pop(0) if self.reload_results else user
        if isinstance(result, Exception):
            raise result
        self.user = result
        return result

    async def sign_out(self):
        self.signed_out = True
        self.user = None


class ClientStub:
    def __init__(self):
        self.posts = []

    async def post_json(self, path, body=None):
        self.posts.append(path)


async def _wait_for_zero(flow):
    for _ in range(200):
        if flow.cooldown == 0:
            return
        await asyncio.sleep(0.005)


def test_start_seeds_state_and_email():
    async def scenario():
        flow = VerificationFlow(IdentityStub(), cooldown_seconds=3)
        await flow.start()
        return flow

    flow = asyncio.run(scenario())
    assert flow.state is VerificationState.UNVERIFIED
    assert flow.email == "alice@example.com"
    assert flow.needs_login is False


def test_start_without_user_needs_login():
    flow = VerificationFlow(IdentityStub(user=None), email_hint="x@y.z")
    asyncio.run(flow.start())
    assert flow.needs_login is True
    assert flow.email == "x@y.z"


def test_resend_starts_cooldown_and_counts_down():
    async def scenario():
        identity = IdentityStub()
        flow = VerificationFlow(identity, cooldown_seconds=3, tick_seconds=0.001)
        ticks = []
        flow.subscribe(lambda f: ticks.append(f.cooldown))

        assert await flow.resend() is True
        assert flow.cooldown == 3
        assert flow.info == RESEND_OK
        assert await flow.resend() is False
        assert identity.sent == 1

        await _wait_for_zero(flow)
        assert await flow.resend() is True
        flow.close()
        return ticks

    ticks = asyncio.run(scenario())
    assert min(ticks) == 0
    assert all(t >= 0 for t in ticks)


def test_rate_limited_resend_still_imposes_cooldown():
    async def scenario():
        identity = IdentityStub(send_error=RateLimitError(code="TOO_MANY_ATTEMPTS_TRY_LATER", message="slow"))
        flow = VerificationFlow(identity, cooldown_seconds=60)
        ok = await flow.resend()
        state = (ok, flow.cooldown, flow.error, flow.can_resend, flow.is_busy)
        flow.close()
        return state

    ok, cooldown, error, can_resend, busy = asyncio.run(scenario())
    assert ok is False
    assert cooldown == 60
    assert error == RESEND_RATE_LIMITED
    assert can_resend is False
    assert busy is False


def test_other_resend_failure_has_no_cooldown():
    async def scenario():
        identity = IdentityStub(send_error=NetworkError(code="NETWORK_ERROR", message="offline"))
        flow = VerificationFlow(identity, cooldown_seconds=60)
        ok = await flow.resend()
        return ok, flow

    ok, flow = asyncio.run(scenario())
    assert ok is False
    assert flow.cooldown == 0
    assert flow.error == RESEND_FAILED
    assert flow.can_resend is True


def test_resend_through_api_client():
    async def scenario():
        identity = IdentityStub()
        client = ClientStub()
        flow = VerificationFlow(identity, client=client, cooldown_seconds=5)
        await flow.resend()
        flow.close()
        return identity, client

    identity, client = asyncio.run(scenario())
    assert client.posts == ["/auth/resend-verification"]
    assert identity.sent == 0


def test_check_now_transitions():
    verified = replace(USER, email_verified=True)

    async def scenario():
        identity = IdentityStub(reload_results=[USER, ApiError(code="API_ERROR", message="x"), verified])
        flow = VerificationFlow(identity)
        states = []
        flow.subscribe(lambda f: states.append(f.state))

        assert await flow.check_now() is False
        assert flow.error == NOT_YET_VERIFIED
        assert await flow.check_now() is False
        assert flow.state is VerificationState.UNVERIFIED
        assert await flow.check_now() is True
        return flow, states

    flow, states = asyncio.run(scenario())
    assert flow.state is VerificationState.VERIFIED
    assert VerificationState.CHECKING in states
    assert flow.is_busy is False
    assert flow.can_resend is False


def test_back_to_login_signs_out():
    identity = IdentityStub()
    flow = VerificationFlow(identity)

    assert asyncio.run(flow.back_to_login()) is True
    assert identity.signed_out is True
    assert flow.needs_login is True
