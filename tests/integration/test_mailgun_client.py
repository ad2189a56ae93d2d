import pytest

from app.services.notifications import mailgun_client as mailgun
from app.services.notifications.mailgun_client import (
    EmailMessage,
    MailgunClient,
    NotificationError,
)
from app.services.notifications.notifier import Notifier

BASE_URL = "https://api.mailgun.test/v3"
MESSAGE = EmailMessage(to="guest@example.com", subject="New match", text="Hello\nthere")


@pytest.fixture
def client():
    return MailgunClient(
        api_key="key-test",
        domain="mg.uvocollab.test",
        base_url=BASE_URL,
        from_address="UvoCollab <noreply@mg.uvocollab.test>",
    )


@pytest.mark.asyncio
async def test_send_success(httpx_mock, client):
    httpx_mock.add_response(
        method="POST",
        url=f"{BASE_URL}/mg.uvocollab.test/messages",
        json={"id": "<20261018.1@mg.uvocollab.test>", "message": "Queued. Thank you."},
    )

    assert await client.send(MESSAGE) is True

    request = httpx_mock.get_request()
    assert request.headers["Authorization"].startswith("Basic ")
    assert b"guest%40example.com" in request.content
    assert b"Hello%3Cbr%3Ethere" in request.content


@pytest.mark.asyncio
async def test_send_skipped_when_not_configured():
    client = MailgunClient(api_key="", domain="", base_url=BASE_URL)

    assert await client.send(MESSAGE) is False


@pytest.mark.asyncio
async def test_rejected_message_raises(httpx_mock, client):
    httpx_mock.add_response(
        method="POST",
        url=f"{BASE_URL}/mg.uvocollab.test/messages",
        status_code=400,
        json={"message": "'to' parameter is not a valid address"},
    )

    with pytest.raises(NotificationError) as exc:
        await client.send(MESSAGE)

    assert exc.value.status_code == 400


@pytest.mark.asyncio
async def test_notifier_swallows_delivery_failure(httpx_mock, client, monkeypatch):
    async def _sleep(_seconds):
        return None

    monkeypatch.setattr(mailgun.asyncio, "sleep", _sleep)
    for _ in range(mailgun.MAX_RETRIES):
        httpx_mock.add_response(
            method="POST", url=f"{BASE_URL}/mg.uvocollab.test/messages", status_code=503
        )

    sent = await Notifier(client).dispatch(MESSAGE, "match_created", match_id="m-1")

    assert sent is False


@pytest.mark.asyncio
async def test_notifier_skips_missing_recipient(client):
    message = EmailMessage(to="", subject="New match", text="Hello")

    assert await Notifier(client).dispatch(message, "match_created") is False
