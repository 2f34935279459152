"""Real-time fan-out transport used by the notification sink"""

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Callable

logger = logging.getLogger(__name__)

Listener = Callable[[str, dict], None]


class Broadcaster(ABC):
    @abstractmethod
    def emit_to_user(self, user_id: str, event: str, payload: dict) -> None:
        ...

    @abstractmethod
    def emit_to_room(self, room: str, event: str, payload: dict) -> None:
        ...


class InProcessBroadcaster(Broadcaster):
    """
    Delivers events to listeners subscribed in this process.

    A socket gateway subscribes one listener per connected user or joined
    room; with nobody subscribed an event is only logged.
    """

    def __init__(self):
        self._user_listeners: dict[str, list[Listener]] = defaultdict(list)
        self._room_listeners: dict[str, list[Listener]] = defaultdict(list)

    def subscribe_user(self, user_id: str, listener: Listener) -> None:
        self._user_listeners[str(user_id)].append(listener)

    def subscribe_room(self, room: str, listener: Listener) -> None:
        self._room_listeners[str(room)].append(listener)

    def unsubscribe_user(self, user_id: str, listener: Listener) -> None:
        listeners = self._user_listeners.get(str(user_id), [])
        if listener in listeners:
            listeners.remove(listener)

    def unsubscribe_room(self, room: str, listener: Listener) -> None:
        listeners = self._room_listeners.get(str(room), [])
        if listener in listeners:
            listeners.remove(listener)

    def emit_to_user(self, user_id, event, payload) -> None:
        self._deliver(self._user_listeners.get(str(user_id), []), event, payload)
        logger.debug(f"📡 {event} -> user:{user_id}")

    def emit_to_room(self, room, event, payload) -> None:
        self._deliver(self._room_listeners.get(str(room), []), event, payload)
        logger.debug(f"📡 {event} -> room:{room}")

    @staticmethod
    def _deliver(listeners: list[Listener], event: str, payload: dict) -> None:
        for listener in list(listeners):
            try:
                listener(event, payload)
            except Exception as e:
                logger.warning(f"⚠️ Listener failed for {event}: {e}")
