import asyncio

from jai_core.api.service import ChatClientApp
from jai_core.chat.sync import ConversationSync
from jai_core.domain.models import AccessDecision, AuthUser, Message, Sender


class SettingsStub:
    api_base_url = "https://chat.example.com/api"
    http_timeout = 1.0
    resend_via_api = False
    resend_cooldown_seconds = 30
    default_code_language = "python"


class IdentityStub:
    def __init__(self, user=None):
        self.user = user
        self.listeners = []
        self.sent = 0

    def on_auth_change(self, callback):
        self.listeners.append(callback)
        return lambda: self.listeners.remove(callback)

    def get_current_user(self):
        return self.user

    async def complete_redirect_sign_in(self):
        return None

    async def sign_in_with_password(self, email, password):
        self.emit(AuthUser(uid="u1", email=email, email_verified=False, provider_ids=("password",)))
        return self.user

    async def send_verification_email(self, user):
        self.sent += 1

    async def sign_out(self):
        self.emit(None)

    def emit(self, user):
        self.user = user
        for callback in list(self.listeners):
            callback(user)


class ClientStub:
    def __init__(self):
        self.calls = []

    async def get_json(self, path):
        self.calls.append(path)
        return [{"_id": "c1", "title": "hello"}]


VERIFIED = AuthUser(uid="u1", email="a@b.c", email_verified=True, provider_ids=("password",))


def _app(identity):
    app = ChatClientApp(identity=identity, cfg=SettingsStub())
    client = ClientStub()
    app.sync = ConversationSync(client)
    return app, client


def test_allowed_session_triggers_summary_refresh():
    identity = IdentityStub(user=VERIFIED)
    app, client = _app(identity)

    async def scenario():
        async with app:
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            return app.navigate("/"), app.navigate("/login")

    home, login = asyncio.run(scenario())
    assert home == (AccessDecision.ALLOW, None)
    assert login == (AccessDecision.REDIRECT_TO_HOME, "/")
    assert client.calls == ["/conversations"]
    assert [s.id for s in app.sync.summaries] == ["c1"]


def test_unverified_sign_in_goes_to_verify_without_refresh():
    identity = IdentityStub()
    app, client = _app(identity)

    async def scenario():
        async with app:
            assert app.navigate("/") == (AccessDecision.REDIRECT_TO_LOGIN, "/login")
            result = await app.sign_in("a@b.c", "secret")
            await asyncio.sleep(0)
            return result

    decision, target = asyncio.run(scenario())
    assert decision is AccessDecision.REDIRECT_TO_VERIFY
    assert target == "/verify-email"
    assert identity.sent == 1
    assert client.calls == []


def test_logout_resets_sync_state():
    identity = IdentityStub(user=VERIFIED)
    app, client = _app(identity)

    async def scenario():
        async with app:
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            assert app.sync.summaries
            assert await app.logout() is True
            return app.navigate("/")

    assert asyncio.run(scenario()) == (AccessDecision.REDIRECT_TO_LOGIN, "/login")
    assert app.sync.summaries == []


def test_render_segments_uses_configured_language():
    app, _ = _app(IdentityStub())
    message = Message(sender=Sender.AI, raw_content="```\nx = 1\n```", created_at=None)
    segments = app.render_segments(message)
    assert segments[0].language == "python"


def test_verification_flow_uses_configured_cooldown():
    app, _ = _app(IdentityStub(user=VERIFIED))
    flow = app.verification(email_hint="a@b.c")
    assert flow.email == "a@b.c"
    assert flow.cooldown == 0
    assert flow.cooldown_window == 30
