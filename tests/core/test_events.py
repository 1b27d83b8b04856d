"""
Tests for the login event publisher.
"""

from oauth_login.core.events import EventPublisher, LoginFailedEvent, LoginSuccessfulEvent
from oauth_login.core.oauth.models import AuthenticationFailure, FailureReason, UserDetails


class TestEventPublisher:
    def test_listeners_receive_their_event_type(self):
        publisher = EventPublisher()
        successes, failures = [], []
        publisher.subscribe(LoginSuccessfulEvent, successes.append)
        publisher.subscribe(LoginFailedEvent, failures.append)

        event = LoginSuccessfulEvent(user=UserDetails(username="abc"), provider="google")
        publisher.publish(event)

        assert successes == [event]
        assert failures == []

    def test_failing_listener_does_not_stop_others(self):
        publisher = EventPublisher()
        received = []

        def broken(event):
            raise RuntimeError("listener bug")

        publisher.subscribe(LoginFailedEvent, broken)
        publisher.subscribe(LoginFailedEvent, received.append)

        event = LoginFailedEvent(failure=AuthenticationFailure(FailureReason.INVALID_STATE), provider="google")
        publisher.publish(event)

        assert received == [event]

    def test_unsubscribe(self):
        publisher = EventPublisher()
        received = []
        publisher.subscribe(LoginSuccessfulEvent, received.append)
        publisher.unsubscribe(LoginSuccessfulEvent, received.append)

        publisher.publish(LoginSuccessfulEvent(user=UserDetails(username="abc"), provider="google"))

        assert received == []
