"""
Reusable retry policy for fallible operations (HTTP calls to a rendering
service, subprocess launches).
"""

import logging

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import DEFAULT_CONFIG

logger = logging.getLogger('md2docx')


class RetryPolicy:
    """Exponential-backoff retry, usable as a decorator or wrapper.

    >>> policy = RetryPolicy(max_attempts=2, base_delay=0)
    >>> @policy
    ... def fetch():
    ...     return 'ok'
    >>> fetch()
    'ok'

    The last exception is re-raised once attempts are exhausted.
    """

    def __init__(self, max_attempts=None, base_delay=None, max_delay=None, retry_on=(Exception,)):
        self.max_attempts = max_attempts if max_attempts is not None else DEFAULT_CONFIG.RETRY_MAX_ATTEMPTS
        self.base_delay = base_delay if base_delay is not None else DEFAULT_CONFIG.RETRY_BASE_DELAY
        self.max_delay = max_delay if max_delay is not None else DEFAULT_CONFIG.RETRY_MAX_DELAY
        self.retry_on = tuple(retry_on)

        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def _retrying(self):
        return Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay, max=self.max_delay),
            retry=retry_if_exception_type(self.retry_on),
            before_sleep=before_sleep_log(logger, logging.DEBUG),
            reraise=True,
        )

    def call(self, fn, *args, **kwargs):
        """Call ``fn`` under this policy."""
        return self._retrying()(fn, *args, **kwargs)

    def wrap(self, fn):
        """Return ``fn`` wrapped in this policy."""
        def wrapper(*args, **kwargs):
            return self.call(fn, *args, **kwargs)

        wrapper.__name__ = getattr(fn, '__name__', 'wrapped')
        wrapper.__doc__ = getattr(fn, '__doc__', None)
        wrapper.__wrapped__ = fn
        return wrapper

    __call__ = wrap

    def __repr__(self):
        return (
            f"RetryPolicy(max_attempts={self.max_attempts}, base_delay={self.base_delay}, "
            f"max_delay={self.max_delay})"
        )


NO_RETRY = RetryPolicy(max_attempts=1, base_delay=0)
