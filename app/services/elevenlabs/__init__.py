"""
ElevenLabs ConvAI integration.
"""

from .client import (
    ConversationAudio,
    ConversationPage,
    ElevenLabsAPIError,
    ElevenLabsClient,
    ElevenLabsNetworkError,
)

__all__ = [
    "ConversationAudio",
    "ConversationPage",
    "ElevenLabsAPIError",
    "ElevenLabsClient",
    "ElevenLabsNetworkError",
]
