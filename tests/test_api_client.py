# tests/test_api_client.py
from unittest.mock import Mock

import pytest
import requests

from botdesk.core.exceptions import ApiError, SessionExpired
from botdesk.core.session import SessionContext
from botdesk.schemas.message import SendManualRequest
from botdesk.services.api_client import BotDeskApiClient


def make_response(status, data=None):
    response = Mock()
    response.status_code = status
    response.ok = 200 <= status < 400
    response.content = b"{...}" if data is not None else b""
    response.json.return_value = data
    return response


@pytest.fixture
def http():
    return Mock(spec=requests.Session)


@pytest.fixture
def client(session, http):
    return BotDeskApiClient(session, base_url="http://api.test/", timeout=3, http=http)


class TestTransport:
    def test_bearer_token_and_url(self, client, http):
        http.request.return_value = make_response(200, {"conversations": []})
        client.get_conversations()

        method, url = http.request.call_args.args
        kwargs = http.request.call_args.kwargs
        assert (method, url) == ("GET", "http://api.test/api/messages/conversations/user-1")
        assert kwargs["headers"]["Authorization"] == "Bearer token-abc"
        assert kwargs["timeout"] == 3

    def test_not_modified_is_empty(self, client, http):
        http.request.return_value = make_response(304)
        assert client.get_conversations() == []

    def test_unauthorized_invalidates_session(self, client, http, session):
        http.request.return_value = make_response(401, {"message": "jwt expired"})

        with pytest.raises(SessionExpired) as exc_info:
            client.get_whatsapp_numbers()

        assert exc_info.value.status_code == 401
        assert session.token is None
        assert session.is_authenticated is False

    def test_server_error_carries_backend_message(self, client, http):
        http.request.return_value = make_response(500, {"message": "Error interno"})
        with pytest.raises(ApiError, match="Error interno") as exc_info:
            client.get_conversations()
        assert exc_info.value.status_code == 500

    def test_network_error(self, client, http):
        http.request.side_effect = requests.ConnectionError("refused")
        with pytest.raises(ApiError):
            client.get_conversations()

    def test_missing_user_id(self, http):
        client = BotDeskApiClient(SessionContext("token", None), http=http)
        with pytest.raises(ApiError):
            client.get_conversations()
        http.request.assert_not_called()


class TestEndpoints:
    def test_get_user(self, client, http):
        http.request.return_value = make_response(200, {
            "success": True,
            "user": {"businessName": "Clínica Sol", "botSettings": None},
        })
        assert client.get_user()["businessName"] == "Clínica Sol"

    def test_get_user_failure(self, client, http):
        http.request.return_value = make_response(200, {"success": False, "message": "No existe"})
        with pytest.raises(ApiError, match="No existe"):
            client.get_user()

    def test_update_bot_settings(self, client, http):
        http.request.return_value = make_response(200, {"success": True})
        result = client.update_bot_settings({"template": "custom"})

        assert result == {"success": True}
        assert http.request.call_args.args == ("PATCH", "http://api.test/api/auth/user/user-1")
        assert http.request.call_args.kwargs["json"] == {"botSettings": {"template": "custom"}}

    def test_whatsapp_numbers(self, client, http):
        http.request.return_value = make_response(200, {
            "whatsAppNumbers": [{"_id": "n1", "displayName": "Principal", "whatsappNumber": "+5215550000"}],
        })
        numbers = client.get_whatsapp_numbers()
        assert numbers[0].id == "n1"
        assert http.request.call_args.args[1].endswith("/auth/whatsapp-numbers/user/user-1")

    def test_messages(self, client, http):
        http.request.return_value = make_response(200, {"conversation": [
            {"messageId": "wamid.1", "content": {"body": "hola"}, "from": "customer",
             "customerWaId": "521", "whatsAppNumberId": "n1"},
        ]})
        messages = client.get_messages("521", "n1")
        assert messages[0].content.body == "hola"
        assert http.request.call_args.args[1] == "http://api.test/api/messages/conversation/521/n1"

    def test_send_manual_body(self, client, http):
        http.request.return_value = make_response(200, {"success": True})
        client.send_manual(SendManualRequest(whats_app_number_id="n1", customer_wa_id="521", message=" hola "))

        assert http.request.call_args.kwargs["json"] == {
            "whatsAppNumberId": "n1", "customerWaId": "521", "message": "hola",
        }

    def test_send_manual_rejected(self, client, http):
        http.request.return_value = make_response(200, {"success": False, "message": "Número inactivo"})
        with pytest.raises(ApiError, match="Número inactivo"):
            client.send_manual(SendManualRequest(whats_app_number_id="n1", customer_wa_id="521", message="hola"))
