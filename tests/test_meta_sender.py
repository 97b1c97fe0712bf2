"""Tests for outbound provider calls: retry policy, errors, no PII in logs."""

import io
import json
import time
import urllib.error
from unittest.mock import patch

import pytest

from wagate.errors import DeadlineExceeded, ProviderRejected, TransportError
from wagate.whatsapp import meta_sender
from wagate.whatsapp.meta_sender import (
    build_template_payload,
    build_text_payload,
    check_connection,
    fetch_templates,
    mark_as_read,
    send_message,
)

from helpers import CUSTOMER_PHONE, PHONE_ID, LogRecorder, make_account

ACCEPTED = {"messaging_product": "whatsapp", "messages": [{"id": "wamid.OK"}]}


def http_error(code: int, body: dict | None = None) -> urllib.error.HTTPError:
    raw = json.dumps(body).encode() if body is not None else b""
    return urllib.error.HTTPError(
        url="https://graph.facebook.com", code=code, msg="err", hdrs=None, fp=io.BytesIO(raw)
    )


@pytest.fixture
def account():
    return make_account()


class TestPayloads:
    def test_text_payload(self):
        assert build_text_payload(CUSTOMER_PHONE, "hi") == {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": CUSTOMER_PHONE,
            "type": "text",
            "text": {"body": "hi", "preview_url": False},
        }

    def test_template_payload_without_components(self):
        payload = build_template_payload(CUSTOMER_PHONE, "welcome", "en_US", [])
        assert payload["template"] == {"name": "welcome", "language": {"code": "en_US"}}


class TestSendMessage:
    def test_success_returns_provider_id(self, account):
        with patch.object(meta_sender, "_do_request", return_value=ACCEPTED) as do_request:
            wamid = send_message(account=account, payload=build_text_payload(CUSTOMER_PHONE, "hi"))

        assert wamid == "wamid.OK"
        url = do_request.call_args[0][0]
        kwargs = do_request.call_args[1]
        assert url == f"https://graph.facebook.com/v21.0/{PHONE_ID}/messages"
        assert kwargs["method"] == "POST"
        assert kwargs["headers"]["Authorization"] == f"Bearer {account.access_token}"
        assert kwargs["timeout"] == 30.0

    def test_account_api_version_and_base_url(self, monkeypatch):
        monkeypatch.setenv("WAGATE_GRAPH_BASE_URL", "http://graph.local/")
        account = make_account(api_version="v19.0")

        with patch.object(meta_sender, "_do_request", return_value=ACCEPTED) as do_request:
            send_message(account=account, payload=build_text_payload(CUSTOMER_PHONE, "hi"))

        assert do_request.call_args[0][0] == f"http://graph.local/v19.0/{PHONE_ID}/messages"

    def test_provider_rejection_is_not_retried(self, account):
        error = http_error(
            400,
            {
                "error": {
                    "message": "Invalid parameter",
                    "type": "OAuthException",
                    "code": 100,
                    "error_subcode": 2494010,
                    "error_data": {"details": "Recipient not on allow list"},
                    "fbtrace_id": "trace-1",
                }
            },
        )
        with patch.object(meta_sender, "_do_request", side_effect=error) as do_request:
            with pytest.raises(ProviderRejected) as exc:
                send_message(account=account, payload=build_text_payload(CUSTOMER_PHONE, "hi"))

        assert do_request.call_count == 1
        assert exc.value.http_status == 400
        assert exc.value.provider_code == 100
        assert exc.value.provider_subcode == 2494010
        assert exc.value.trace_id == "trace-1"
        assert exc.value.message == "Invalid parameter: Recipient not on allow list"
        assert exc.value.to_dict()["action"] == "retry"

    def test_server_error_is_not_retried(self, account):
        with patch.object(meta_sender, "_do_request", side_effect=http_error(503)) as do_request:
            with pytest.raises(ProviderRejected) as exc:
                send_message(account=account, payload=build_text_payload(CUSTOMER_PHONE, "hi"))

        assert do_request.call_count == 1
        assert exc.value.http_status == 503
        assert exc.value.provider_code is None

    def test_transport_error_retried_once_with_same_payload(self, account, no_retry_delay):
        side_effect = [urllib.error.URLError("connection reset"), ACCEPTED]
        with patch.object(meta_sender, "_do_request", side_effect=side_effect) as do_request:
            wamid = send_message(account=account, payload=build_text_payload(CUSTOMER_PHONE, "hi"))

        assert wamid == "wamid.OK"
        assert do_request.call_count == 2
        first, second = do_request.call_args_list
        assert first[1]["data"] == second[1]["data"]

    def test_transport_error_twice_surfaces(self, account, no_retry_delay):
        with patch.object(meta_sender, "_do_request", side_effect=TimeoutError("timed out")) as do_request:
            with pytest.raises(TransportError) as exc:
                send_message(account=account, payload=build_text_payload(CUSTOMER_PHONE, "hi"))

        assert do_request.call_count == 2
        assert exc.value.status_code == 503

    def test_accepted_without_id_is_rejection(self, account):
        with patch.object(meta_sender, "_do_request", return_value={"messages": []}):
            with pytest.raises(ProviderRejected):
                send_message(account=account, payload=build_text_payload(CUSTOMER_PHONE, "hi"))

    def test_expired_deadline_makes_no_call(self, account):
        with patch.object(meta_sender, "_do_request") as do_request:
            with pytest.raises(DeadlineExceeded):
                send_message(
                    account=account,
                    payload=build_text_payload(CUSTOMER_PHONE, "hi"),
                    deadline=time.monotonic() - 1,
                )

        do_request.assert_not_called()

    def test_deadline_shortens_timeout(self, account):
        with patch.object(meta_sender, "_do_request", return_value=ACCEPTED) as do_request:
            send_message(
                account=account,
                payload=build_text_payload(CUSTOMER_PHONE, "hi"),
                deadline=time.monotonic() + 5,
            )

        assert do_request.call_args[1]["timeout"] <= 5


class TestNoPiiLeakage:
    MESSAGE_TEXT = "my secret booking details"

    def test_send_logs_no_phone_text_or_token(self, account):
        recorder = LogRecorder()
        with patch("wagate.whatsapp.meta_sender.logger", recorder):
            with patch.object(meta_sender, "_do_request", return_value=ACCEPTED):
                send_message(
                    account=account,
                    payload=build_text_payload(CUSTOMER_PHONE, self.MESSAGE_TEXT),
                    correlation_id="corr-1",
                )

        logged = recorder.get_all_logged_content()
        assert CUSTOMER_PHONE not in logged
        assert self.MESSAGE_TEXT not in logged
        assert account.access_token not in logged
        assert len(recorder.calls) >= 1

    def test_rejection_logs_no_token(self, account):
        recorder = LogRecorder()
        with patch("wagate.whatsapp.meta_sender.logger", recorder):
            with patch.object(meta_sender, "_do_request", side_effect=http_error(401)):
                with pytest.raises(ProviderRejected):
                    send_message(account=account, payload=build_text_payload(CUSTOMER_PHONE, "x"))

        assert account.access_token not in recorder.get_all_logged_content()
        assert recorder.messages("warning") == ["provider rejected request"]


class TestReadReceipt:
    def test_mark_as_read_payload(self, account):
        with patch.object(meta_sender, "_do_request", return_value={"success": True}) as do_request:
            mark_as_read(account=account, provider_message_id="wamid.IN")

        body = json.loads(do_request.call_args[1]["data"])
        assert body == {"messaging_product": "whatsapp", "status": "read", "message_id": "wamid.IN"}


class TestFetchTemplates:
    def test_follows_paging(self, account):
        pages = [
            {"data": [{"name": "a"}], "paging": {"next": "https://graph.facebook.com/next"}},
            {"data": [{"name": "b"}, "junk"], "paging": {}},
        ]
        with patch.object(meta_sender, "_do_request", side_effect=pages) as do_request:
            templates = fetch_templates(account=account)

        assert [t["name"] for t in templates] == ["a", "b"]
        assert "waba-1/message_templates" in do_request.call_args_list[0][0][0]
        assert do_request.call_args_list[1][0][0] == "https://graph.facebook.com/next"


class TestCheckConnection:
    def test_success(self, account):
        result = {
            "display_phone_number": "+1 555 000 1111",
            "verified_name": "Hotel",
            "code_verification_status": "VERIFIED",
            "account_mode": "LIVE",
            "quality_rating": "GREEN",
        }
        with patch.object(meta_sender, "_do_request", return_value=result):
            response = check_connection(account=account)

        assert response["success"] is True
        assert response["is_test_number"] is False
        assert response["verified_name"] == "Hotel"
        assert "warning" not in response

    def test_sandbox_warning(self, account):
        with patch.object(meta_sender, "_do_request", return_value={"account_mode": "SANDBOX"}):
            response = check_connection(account=account)

        assert response["is_test_number"] is True
        assert "sandbox" in response["warning"]

    def test_failure_does_not_raise(self, account):
        error = http_error(401, {"error": {"message": "Invalid OAuth access token", "code": 190}})
        with patch.object(meta_sender, "_do_request", side_effect=error):
            response = check_connection(account=account)

        assert response == {
            "success": False,
            "error": "Invalid OAuth access token",
            "provider_code": 190,
        }
