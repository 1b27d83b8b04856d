"""
Login event publication.

Listeners subscribe per event type and are called synchronously in
subscription order. A failing listener is logged and does not stop the others
or the login itself.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Type

from loguru import logger

from oauth_login.core.oauth.models import AuthenticationFailure, UserDetails

LOG_PREFIX = "[LoginEvents]"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class LoginSuccessfulEvent:
    user: UserDetails
    provider: str
    timestamp: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class LoginFailedEvent:
    failure: AuthenticationFailure
    provider: str
    timestamp: datetime = field(default_factory=_now)


Listener = Callable[[Any], None]


class EventPublisher:
    """In-process publisher for login events."""

    def __init__(self) -> None:
        self._listeners: Dict[Type[Any], List[Listener]] = {}

    def subscribe(self, event_type: Type[Any], listener: Listener) -> None:
        self._listeners.setdefault(event_type, []).append(listener)

    def unsubscribe(self, event_type: Type[Any], listener: Listener) -> None:
        listeners = self._listeners.get(event_type, [])
        if listener in listeners:
            listeners.remove(listener)

    def publish(self, event: Any) -> None:
        for listener in list(self._listeners.get(type(event), [])):
            try:
                listener(event)
            except Exception as e:
                logger.opt(exception=True).error(
                    f"{LOG_PREFIX} Listener {getattr(listener, '__name__', listener)!r} failed "
                    f"for {type(event).__name__}: {e}"
                )
