"""Ownership checks for conversations."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from src.nova.errors import ConversationAccessDenied, ConversationNotFound

if TYPE_CHECKING:
    from src.nova.models import Conversation
    from src.nova.store import ConversationStore

logger = logging.getLogger(__name__)


class AccessGuard:
    """Verifies a caller owns a conversation before it is read or written."""

    def __init__(self, store: ConversationStore) -> None:
        self._store = store

    async def authorize(self, conversation_id: str, caller_profile_id: str) -> Conversation:
        """Load the conversation and check the caller owns it.

        Raises:
            ConversationNotFound: No live conversation has this ID.
            ConversationAccessDenied: The conversation belongs to someone else.
        """
        conversation = await self._store.get_conversation(conversation_id)
        if conversation is None:
            raise ConversationNotFound(conversation_id)

        if conversation.profile_id != caller_profile_id:
            logger.warning(
                "Profile %s denied access to conversation %s",
                caller_profile_id,
                conversation_id,
            )
            raise ConversationAccessDenied(conversation_id, caller_profile_id)

        return conversation
