"""Bounded, cancellable polling."""
import datetime
import logging
import threading
import time
from typing import Callable
from typing import Optional
from typing import TypeVar

from acmeflow import errors

logger = logging.getLogger(__name__)

T = TypeVar('T')


def utcnow() -> datetime.datetime:
    """Current time, timezone aware."""
    return datetime.datetime.now(datetime.timezone.utc)


def aware_utc(value: datetime.datetime) -> datetime.datetime:
    """``value`` in UTC; a naive ``value`` is taken as local time."""
    return value.astimezone(datetime.timezone.utc)


class PollPolicy:
    """How often and for how long a resource is polled.

    :ivar float interval: Seconds to wait between two attempts.
    :ivar int max_attempts: Maximum number of status checks.
    :ivar datetime.datetime deadline: Optional point in time after which
        no further attempt is made. Naive values are taken as local time
        and stored in UTC.

    """

    def __init__(self, interval: float = 1, max_attempts: int = 30,
                 deadline: Optional[datetime.datetime] = None) -> None:
        if max_attempts < 1:
            raise ValueError('max_attempts must be at least 1')
        if interval < 0:
            raise ValueError('interval must not be negative')
        self.interval = interval
        self.max_attempts = max_attempts
        self.deadline = aware_utc(deadline) if deadline is not None else None

    def __repr__(self) -> str:
        return '{0}(interval={1!r}, max_attempts={2!r}, deadline={3!r})'.format(
            self.__class__.__name__, self.interval, self.max_attempts, self.deadline)

    def with_deadline(self, deadline: Optional[datetime.datetime]) -> 'PollPolicy':
        """Copy of this policy with another deadline."""
        return PollPolicy(self.interval, self.max_attempts, deadline)


def _check_cancelled(cancel: Optional[threading.Event], what: str) -> None:
    if cancel is not None and cancel.is_set():
        raise errors.Cancelled('Cancelled while waiting for {0}'.format(what))


def _wait(seconds: float, cancel: Optional[threading.Event], what: str) -> None:
    if seconds <= 0:
        return
    if cancel is None:
        time.sleep(seconds)
    elif cancel.wait(seconds):
        raise errors.Cancelled('Cancelled while waiting for {0}'.format(what))


def poll(check: Callable[[], Optional[T]], policy: PollPolicy,
         cancel: Optional[threading.Event] = None, what: str = 'resource') -> T:
    """Call ``check`` until it returns something other than ``None``.

    ``check`` is called at most ``policy.max_attempts`` times, with
    ``policy.interval`` seconds between two calls. It ends the polling
    early by raising.

    :param callable check: Status check, returns ``None`` while the
        resource is not ready.
    :param PollPolicy policy:
    :param threading.Event cancel: Cancellation token, checked before
        every attempt and interrupting every wait.
    :param str what: Description of the polled resource, for messages.

    :raises .Cancelled: if ``cancel`` is set.
    :raises .TimeoutError: if the attempt budget is exhausted or the
        deadline has passed.

    :returns: The first value returned by ``check`` that is not ``None``.

    """
    for attempt in range(1, policy.max_attempts + 1):
        _check_cancelled(cancel, what)
        if policy.deadline is not None and utcnow() > policy.deadline:
            raise errors.TimeoutError(
                'Deadline passed while waiting for {0}'.format(what))
        result = check()
        if result is not None:
            logger.debug('%s ready after %d attempt(s)', what, attempt)
            return result
        if attempt == policy.max_attempts:
            break
        interval = policy.interval
        if policy.deadline is not None:
            remaining = (policy.deadline - utcnow()).total_seconds()
            interval = max(0, min(interval, remaining))
        logger.debug('Waiting %s second(s) for %s (attempt %d of %d)',
                     interval, what, attempt, policy.max_attempts)
        _wait(interval, cancel, what)
    raise errors.TimeoutError('Gave up waiting for {0} after {1} attempts'.format(
        what, policy.max_attempts))
