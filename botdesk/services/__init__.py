# botdesk/services/__init__.py
"""
Service layer initialization.
Builds the per-session services of one dashboard user.
"""
from typing import Optional

from botdesk.core.session import SessionContext
from botdesk.services.api_client import BotDeskApiClient
from botdesk.services.conversation_sync import ConversationSyncEngine
from botdesk.services.flow_config_service import FlowConfigModel
from botdesk.ws.channel import EventHub, RealtimeChannel


def get_api_client(session: SessionContext) -> BotDeskApiClient:
    """Get REST client bound to a session"""
    return BotDeskApiClient(session)


def load_flow_config(api_client: BotDeskApiClient) -> FlowConfigModel:
    """Fetch the user record and open its bot flow in the editor"""
    return FlowConfigModel.from_user(api_client.get_user())


def get_conversation_engine(
    session: SessionContext,
    api_client: Optional[BotDeskApiClient] = None,
    channel: Optional[RealtimeChannel] = None,
) -> ConversationSyncEngine:
    """Get ConversationSyncEngine wired to a channel (in-process hub by default)"""
    return ConversationSyncEngine(
        session,
        api_client or get_api_client(session),
        channel or EventHub(),
    )


__all__ = [
    'BotDeskApiClient',
    'ConversationSyncEngine',
    'FlowConfigModel',
    'get_api_client',
    'load_flow_config',
    'get_conversation_engine',
]
