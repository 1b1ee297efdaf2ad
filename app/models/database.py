"""
Database Models Export.
This allows us to make simple imports like:
'from app.models.database import Conversation, Message'
"""
from app.models.assistant import Assistant
from app.models.chat_file import ChatFile
from app.models.conversation import Conversation, Message
from app.models.institution import (
    Institution,
    InstitutionAssistant,
    InstitutionMembership,
    InstitutionSubscription,
)
from app.models.subscription import Subscription, UserPackage

# Explicitly define what is exported
__all__ = [
    "Assistant",
    "ChatFile",
    "Conversation",
    "Institution",
    "InstitutionAssistant",
    "InstitutionMembership",
    "InstitutionSubscription",
    "Message",
    "Subscription",
    "UserPackage",
]
