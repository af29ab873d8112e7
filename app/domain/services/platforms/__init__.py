"""
Platform integrations

לקוחות HTTP ל-Zoom / Microsoft Graph / Google Meet, ספקי טוקן OAuth,
יצירת טיוטות (Anthropic) והתראות Slack.
"""
from app.domain.services.platforms.draft_generator import AnthropicDraftGenerator, DraftGenerator
from app.domain.services.platforms.graph import GraphClient
from app.domain.services.platforms.meet import MeetClient
from app.domain.services.platforms.slack import SlackAlertNotifier
from app.domain.services.platforms.token_provider import OAuthTokenProvider
from app.domain.services.platforms.zoom import ZoomClient

__all__ = [
    "AnthropicDraftGenerator",
    "DraftGenerator",
    "GraphClient",
    "MeetClient",
    "OAuthTokenProvider",
    "SlackAlertNotifier",
    "ZoomClient",
]
