# botdesk/services/api_client.py
"""
REST client for the bot backend.

Wraps the endpoints the dashboard talks to:
- GET   /api/auth/user/{id}                       user record with botSettings
- PATCH /api/auth/user/{id}                       {botSettings: ...}
- GET   /api/auth/whatsapp-numbers/user/{id}      connected numbers
- GET   /api/messages/conversations/{id}          conversation list snapshot
- GET   /api/messages/conversation/{wa}/{number}  message list snapshot
- POST  /api/messages/send-manual                 manual reply

A 401 invalidates the injected SessionContext and raises SessionExpired.
A 304 on a snapshot endpoint means "nothing to show" and yields an empty list.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

import requests

from botdesk.core.config import API_URL, HTTP_TIMEOUT
from botdesk.core.exceptions import ApiError, SessionExpired
from botdesk.core.logging_config import get_api_logger, log_api_request, log_api_response
from botdesk.core.session import SessionContext
from botdesk.schemas.message import Conversation, Message, SendManualRequest, WhatsAppNumber

log = logging.getLogger("botdesk.api_client")
api_log = get_api_logger()


class BotDeskApiClient:
    """Thin requests-based client bound to one session"""

    def __init__(
        self,
        session: SessionContext,
        base_url: str = API_URL,
        timeout: float = HTTP_TIMEOUT,
        http: Optional[requests.Session] = None,
    ):
        """
        Args:
            session: Token + user id used for every call
            base_url: Backend root (``/api`` is appended per call)
            timeout: Seconds per request
            http: Optional pre-built requests.Session (tests inject one)
        """
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.http = http or requests.Session()

    # ────────────────────────────────────────────
    # Transport
    # ────────────────────────────────────────────

    def _url(self, path: str) -> str:
        return f"{self.base_url}/api/{path.lstrip('/')}"

    def _request(self, method: str, path: str, json: Optional[dict] = None) -> Tuple[int, Dict[str, Any]]:
        url = self._url(path)
        headers = {"Content-Type": "application/json", **self.session.auth_headers()}
        log_api_request(api_log, method, url, data=json, headers=headers)

        try:
            response = self.http.request(method, url, json=json, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            log_api_response(api_log, None, error=e)
            raise ApiError(f"{method} {path} failed: {e}") from e

        status = response.status_code
        if status == 304:
            log_api_response(api_log, status, None)
            return status, {}

        try:
            data = response.json() if response.content else {}
        except ValueError:
            data = {}
        log_api_response(api_log, status, data)

        if status == 401:
            self.session.invalidate()
            raise SessionExpired(self.session)

        if not response.ok:
            message = data.get("message") if isinstance(data, dict) else None
            raise ApiError(message or f"HTTP {status} on {method} {path}", status_code=status, payload=data)

        return status, data if isinstance(data, dict) else {}

    def _require_user_id(self) -> str:
        if not self.session.user_id:
            raise ApiError("User id not found in session")
        return self.session.user_id

    # ────────────────────────────────────────────
    # User / bot settings
    # ────────────────────────────────────────────

    def get_user(self) -> Dict[str, Any]:
        """Fetch the logged-in user record (contains ``botSettings``)"""
        user_id = self._require_user_id()
        _, data = self._request("GET", f"auth/user/{user_id}")
        if not data.get("success") or not data.get("user"):
            raise ApiError(data.get("message") or "Error fetching user", payload=data)
        return data["user"]

    def update_bot_settings(self, document: Dict[str, Any]) -> Dict[str, Any]:
        """
        Persist a cleaned bot-flow document.

        Returns:
            Backend answer ``{"success": bool, "message": str?}``
        """
        user_id = self._require_user_id()
        _, data = self._request("PATCH", f"auth/user/{user_id}", json={"botSettings": document})
        return data

    # ────────────────────────────────────────────
    # Inbox
    # ────────────────────────────────────────────

    def get_whatsapp_numbers(self) -> List[WhatsAppNumber]:
        user_id = self._require_user_id()
        _, data = self._request("GET", f"auth/whatsapp-numbers/user/{user_id}")
        return [WhatsAppNumber.model_validate(n) for n in data.get("whatsAppNumbers") or []]

    def get_conversations(self) -> List[Conversation]:
        user_id = self._require_user_id()
        _, data = self._request("GET", f"messages/conversations/{user_id}")
        return [Conversation.model_validate(c) for c in data.get("conversations") or []]

    def get_messages(self, customer_wa_id: str, whats_app_number_id: str) -> List[Message]:
        _, data = self._request("GET", f"messages/conversation/{customer_wa_id}/{whats_app_number_id}")
        return [Message.model_validate(m) for m in data.get("conversation") or []]

    def send_manual(self, request: SendManualRequest) -> Dict[str, Any]:
        """Ask the backend to deliver a manual reply through WhatsApp"""
        _, data = self._request("POST", "messages/send-manual", json=request.model_dump(by_alias=True))
        if data and not data.get("success", True):
            raise ApiError(data.get("message") or "Send rejected", payload=data)
        return data
