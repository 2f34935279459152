"""System notices posted into an appointment's chat"""

import logging
from abc import ABC, abstractmethod

from ...models import ChatNotice

logger = logging.getLogger(__name__)


class ChatCollaborator(ABC):
    @abstractmethod
    def post_system_notice(self, appointment_id: int, text: str) -> None:
        """Insert a system-authored message visible to both parties"""


class DatabaseChatNotices(ChatCollaborator):
    def __init__(self, session_factory):
        self.session_factory = session_factory

    def post_system_notice(self, appointment_id, text) -> None:
        db = self.session_factory()
        try:
            db.add(ChatNotice(appointment_id=appointment_id, text=text))
            db.commit()
            logger.info(f"💬 System notice posted to appointment {appointment_id}")
        except Exception as e:
            db.rollback()
            logger.error(f"❌ Failed to post system notice to appointment {appointment_id}: {e}")
            raise
        finally:
            db.close()
