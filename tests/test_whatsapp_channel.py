import asyncio
import base64
import hashlib
import hmac
from unittest.mock import AsyncMock, Mock

import pytest

from supportbot.channels import ChannelSendError, WhatsAppTwilioAdapter, split_message


def _adapter(client=None, **kwargs):
    values = {
        "account_sid": "AC123",
        "auth_token": "secret",
        "from_number": "whatsapp:+14155238886",
        "client": client,
        "sleep_func": AsyncMock(),
    }
    values.update(kwargs)
    return WhatsAppTwilioAdapter(**values)


def _form(**overrides):
    values = {
        "MessageSid": "SM123",
        "AccountSid": "AC123",
        "From": "whatsapp:+15550001",
        "To": "whatsapp:+14155238886",
        "Body": "Hello",
        "NumMedia": "0",
        "ProfileName": "Ana",
    }
    values.update(overrides)
    return values


class TestSplitMessage:
    def test_short_text_single_chunk(self):
        assert split_message("hello", 1600) == ["hello"]

    def test_splits_at_last_paragraph_before_limit(self):
        text = "a" * 10 + "\n\n" + "b" * 10 + "\n\n" + "c" * 10
        assert split_message(text, 25) == ["a" * 10 + "\n\n" + "b" * 10, "c" * 10]

    def test_hard_cut_without_paragraph(self):
        assert split_message("x" * 25, 10) == ["x" * 10, "x" * 10, "x" * 5]

    def test_every_chunk_within_limit(self):
        text = ("word " * 50 + "\n\n") * 20
        assert all(len(chunk) <= 300 for chunk in split_message(text, 300))


class TestParseWebhook:
    def test_text_message(self):
        msg = _adapter().parse_webhook(_form())

        assert msg.channel_type == "WHATSAPP"
        assert msg.channel_user_id == "+15550001"
        assert msg.channel_message_id == "SM123"
        assert msg.text == "Hello"
        assert msg.user_name == "Ana"

    def test_missing_body_and_media_discarded(self):
        assert _adapter().parse_webhook(_form(Body="")) is None

    def test_missing_sender_discarded(self):
        assert _adapter().parse_webhook(_form(From=None)) is None

    def test_media_only_gets_placeholder(self):
        msg = _adapter().parse_webhook(
            _form(Body="", NumMedia="1", MediaUrl0="https://api.twilio.com/media/1", MediaContentType0="image/jpeg")
        )

        assert msg.text == "[image]"
        assert msg.media_type == "image"
        assert msg.media_url == "https://api.twilio.com/media/1"

    def test_pdf_is_document(self):
        msg = _adapter().parse_webhook(
            _form(NumMedia="1", MediaUrl0="https://api.twilio.com/media/2", MediaContentType0="application/pdf")
        )

        assert msg.text == "Hello"
        assert msg.media_type == "document"


class TestVerifySignature:
    def _sign(self, url, params, token="secret"):
        payload = url + "".join(f"{k}{params[k]}" for k in sorted(params))
        return base64.b64encode(hmac.new(token.encode(), payload.encode(), hashlib.sha1).digest()).decode()

    def test_valid_signature(self):
        url = "https://bot.example.com/webhooks/whatsapp"
        params = _form()
        assert _adapter().verify_signature(url, params, self._sign(url, params)) is True

    def test_tampered_params(self):
        url = "https://bot.example.com/webhooks/whatsapp"
        params = _form()
        signature = self._sign(url, params)
        params["Body"] = "changed"
        assert _adapter().verify_signature(url, params, signature) is False

    def test_missing_signature(self):
        assert _adapter().verify_signature("https://x", _form(), None) is False


class TestSendMessage:
    def _client(self, *responses):
        client = Mock()
        client.post = AsyncMock(side_effect=list(responses))
        return client

    def test_posts_to_twilio(self):
        client = self._client(Mock(status_code=201, json=Mock(return_value={"sid": "SM1"})))

        asyncio.run(_adapter(client).send_message("+15550001", "Hi there"))

        args, kwargs = client.post.await_args
        assert args[0] == "https://api.twilio.com/2010-04-01/Accounts/AC123/Messages.json"
        assert kwargs["data"]["To"] == "whatsapp:+15550001"
        assert kwargs["data"]["From"] == "whatsapp:+14155238886"
        assert kwargs["data"]["Body"] == "Hi there"
        assert kwargs["auth"] == ("AC123", "secret")

    def test_long_message_sent_in_chunks(self):
        ok = Mock(status_code=201, json=Mock(return_value={"sid": "SM"}))
        client = self._client(ok, ok)

        asyncio.run(_adapter(client, max_message_length=10).send_message("+1", "a" * 15))

        bodies = [call.kwargs["data"]["Body"] for call in client.post.await_args_list]
        assert bodies == ["a" * 10, "a" * 5]

    def test_retries_server_error(self):
        client = self._client(
            Mock(status_code=503, text="unavailable"),
            Mock(status_code=201, json=Mock(return_value={"sid": "SM1"})),
        )

        asyncio.run(_adapter(client).send_message("+1", "hi"))

        assert client.post.await_count == 2

    def test_client_error_raises(self):
        client = self._client(Mock(status_code=400, text="invalid To"))

        with pytest.raises(ChannelSendError) as exc_info:
            asyncio.run(_adapter(client).send_message("+1", "hi"))

        assert exc_info.value.status_code == 400
        assert client.post.await_count == 1

    def test_missing_credentials(self):
        with pytest.raises(ChannelSendError):
            asyncio.run(
                WhatsAppTwilioAdapter(account_sid="", auth_token="", from_number="").send_message("+1", "hi")
            )
