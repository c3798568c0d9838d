import requests

from pitchup import (
    Channel, DeliveryConfig, DeliveryRouter, InAppBannerTransport, InMemoryStore, PushPermission,
    ResendEmailTransport, StaticPermissionProbe, TerminalNotifierTransport, UserNotificationPreference
)
from pitchup.delivery import NotificationPayload
from pitchup.errors import ErrorKind, TransportError

from conftest import FakeTransport


def make_router(push=None, email=None, in_app=None, probe=None, preference=None, config=None):
    store = InMemoryStore()
    if preference:
        store.save_user_preference(preference)
    transports = {
        Channel.PUSH: push or FakeTransport(),
        Channel.EMAIL: email or FakeTransport(),
        Channel.IN_APP: in_app or FakeTransport()
    }
    router = DeliveryRouter(
        transports=transports,
        store=store,
        probe=probe or StaticPermissionProbe(),
        config=config
    )
    return router, transports


def channels(attempts):
    return [a.channel for a in attempts]


EMAIL_PREF = UserNotificationPreference("u1", push_enabled=True, email_enabled=True, email_address="u1@example.com")


def test_push_delivered_skips_email():
    router, transports = make_router(preference=EMAIL_PREF)
    attempts = router.notify("u1", 100.0)

    assert channels(attempts) == [Channel.PUSH, Channel.IN_APP]
    assert all(a.delivered for a in attempts)
    assert transports[Channel.EMAIL].sent == []

    payload = transports[Channel.PUSH].sent[0][2]
    assert payload.title == "Time to Pitch Up!"
    assert payload.url == "https://pitch-up.vercel.app/record"
    assert payload.fired_at == 100.0


def test_push_failure_falls_through_to_email():
    router, transports = make_router(push=FakeTransport(error=ErrorKind.TRANSPORT_FAILURE), preference=EMAIL_PREF)
    attempts = router.notify("u1", 100.0)

    assert channels(attempts) == [Channel.PUSH, Channel.EMAIL, Channel.IN_APP]
    assert [a.delivered for a in attempts] == [False, True, True]
    assert attempts[0].error == ErrorKind.TRANSPORT_FAILURE
    assert transports[Channel.EMAIL].sent[0][2].recipient == "u1@example.com"


def test_permission_denied_recorded_without_send():
    probe = StaticPermissionProbe(permission=PushPermission.DENIED)
    router, transports = make_router(probe=probe)
    attempts = router.notify("u1", 100.0)

    assert attempts[0].channel == Channel.PUSH
    assert attempts[0].error == ErrorKind.PERMISSION_DENIED
    assert transports[Channel.PUSH].sent == []
    assert attempts[-1].channel == Channel.IN_APP


def test_undetermined_permission_requested_once_per_firing():
    probe = StaticPermissionProbe(permission=PushPermission.UNDETERMINED, grant_on_request=True)
    router, transports = make_router(probe=probe)
    attempts = router.notify("u1", 100.0)

    assert probe.request_count == 1
    assert attempts[0].delivered


def test_undetermined_permission_not_requested_when_disabled():
    probe = StaticPermissionProbe(permission=PushPermission.UNDETERMINED)
    config = DeliveryConfig(request_permission_on_fire=False)
    router, transports = make_router(probe=probe, config=config)
    attempts = router.notify("u1", 100.0)

    assert probe.request_count == 0
    assert attempts[0].error == ErrorKind.PERMISSION_DENIED


def test_push_skipped_when_incapable_or_disabled():
    router, _ = make_router(probe=StaticPermissionProbe(capable=False))
    assert channels(router.notify("u1", 1.0)) == [Channel.IN_APP]

    router, _ = make_router(preference=UserNotificationPreference("u1", push_enabled=False))
    assert channels(router.notify("u1", 1.0)) == [Channel.IN_APP]


def test_email_needs_an_address():
    preference = UserNotificationPreference("u1", push_enabled=False, email_enabled=True, email_address=None)
    router, transports = make_router(preference=preference)
    assert channels(router.notify("u1", 1.0)) == [Channel.IN_APP]


def test_raising_transport_does_not_block_others():
    router, transports = make_router(
        push=FakeTransport(raises=RuntimeError("boom")),
        email=FakeTransport(raises=TransportError("provider down")),
        preference=EMAIL_PREF
    )
    attempts = router.notify("u1", 1.0)

    assert [a.error for a in attempts] == [ErrorKind.TRANSPORT_FAILURE, ErrorKind.TRANSPORT_FAILURE, None]
    assert DeliveryRouter.delivered_any(attempts)


def test_all_channels_failing():
    router, _ = make_router(
        push=FakeTransport(error=ErrorKind.TRANSPORT_FAILURE),
        in_app=FakeTransport(error=ErrorKind.TRANSPORT_FAILURE)
    )
    attempts = router.notify("u1", 1.0)
    assert not DeliveryRouter.delivered_any(attempts)


def test_missing_transport_is_a_failure():
    router = DeliveryRouter(transports={}, store=InMemoryStore(), probe=StaticPermissionProbe(capable=False))
    attempts = router.notify("u1", 1.0)
    assert attempts[0].channel == Channel.IN_APP
    assert attempts[0].error == ErrorKind.TRANSPORT_FAILURE


def test_in_app_banner_needs_open_app():
    app_open = {"value": False}
    transport = InAppBannerTransport(is_app_open=lambda: app_open["value"])
    payload = NotificationPayload("t", "b", "u", "tag", 1.0)

    assert transport.send(Channel.IN_APP, "u1", payload) == ErrorKind.TRANSPORT_FAILURE
    app_open["value"] = True
    assert transport.send(Channel.IN_APP, "u1", payload) is None
    assert transport.pop_banners() == [payload]
    assert transport.pop_banners() == []


class FakeResponse:
    def __init__(self, status_code=200):
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} error")


class FakeSession:
    def __init__(self, response=None, raises=None):
        self.response = response or FakeResponse()
        self.raises = raises
        self.posts = []

    def post(self, url, headers=None, json=None, timeout=None):
        self.posts.append({"url": url, "headers": headers, "json": json, "timeout": timeout})
        if self.raises:
            raise self.raises
        return self.response


def email_payload():
    return NotificationPayload(
        title="Time to Pitch Up!",
        body="2 minutes to record your audio pitch",
        url="https://pitch-up.vercel.app/record",
        tag="pitch-up-notification",
        fired_at=1.0,
        recipient="u1@example.com"
    )


def test_resend_request():
    session = FakeSession()
    transport = ResendEmailTransport(api_key="re_test", session=session)

    assert transport.send(Channel.EMAIL, "u1", email_payload()) is None

    post = session.posts[0]
    assert post["url"] == "https://api.resend.com/emails"
    assert post["headers"]["Authorization"] == "Bearer re_test"
    assert post["json"]["to"] == ["u1@example.com"]
    assert post["json"]["subject"] == "Time to Pitch Up!"
    assert "Record Your Pitch Now" in post["json"]["html"]
    assert "https://pitch-up.vercel.app/record" in post["json"]["html"]
    assert post["timeout"] == 10.0


def test_resend_failures():
    session = FakeSession(raises=requests.exceptions.ConnectionError("offline"))
    transport = ResendEmailTransport(api_key="re_test", session=session)
    assert transport.send(Channel.EMAIL, "u1", email_payload()) == ErrorKind.TRANSPORT_FAILURE

    session = FakeSession(response=FakeResponse(500))
    transport = ResendEmailTransport(api_key="re_test", session=session)
    assert transport.send(Channel.EMAIL, "u1", email_payload()) == ErrorKind.TRANSPORT_FAILURE


def test_resend_without_api_key(monkeypatch):
    monkeypatch.delenv("RESEND_API_KEY", raising=False)
    session = FakeSession()
    transport = ResendEmailTransport(session=session)
    assert transport.send(Channel.EMAIL, "u1", email_payload()) == ErrorKind.TRANSPORT_FAILURE
    assert session.posts == []


def test_terminal_notifier_missing(monkeypatch):
    def missing(*args, **kwargs):
        raise FileNotFoundError("terminal-notifier")

    monkeypatch.setattr("pitchup.transports.subprocess.Popen", missing)
    transport = TerminalNotifierTransport()
    assert transport.send(Channel.PUSH, "u1", email_payload()) == ErrorKind.TRANSPORT_FAILURE
