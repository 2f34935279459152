"""Process-wide collaborators, built once at startup and passed to every component"""

import logging
from dataclasses import dataclass

from .database import SessionLocal
from .domain.ledger.service import LedgerService, WalletLedger
from .domain.notifications.broadcaster import Broadcaster, InProcessBroadcaster
from .domain.notifications.chat import ChatCollaborator, DatabaseChatNotices
from .domain.notifications.service import DatabaseNotificationSink, NotificationSink

logger = logging.getLogger(__name__)


@dataclass
class Collaborators:
    session_factory: object
    broadcaster: Broadcaster
    notifications: NotificationSink
    chat: ChatCollaborator
    ledger: LedgerService


def build_collaborators(session_factory=SessionLocal, broadcaster: Broadcaster = None) -> Collaborators:
    broadcaster = broadcaster or InProcessBroadcaster()
    notifications = DatabaseNotificationSink(session_factory, broadcaster)
    collaborators = Collaborators(
        session_factory=session_factory,
        broadcaster=broadcaster,
        notifications=notifications,
        chat=DatabaseChatNotices(session_factory),
        ledger=WalletLedger(notifications),
    )
    logger.info("✅ Collaborators initialized")
    return collaborators
