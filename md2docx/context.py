"""
Per-call conversion context.

Holds the logger, stage timers and an optional cancellation check so
that repeated or concurrent conversions never share mutable state.
"""

import logging
import time
from contextlib import contextmanager

from .config import DEFAULT_CONFIG
from .exceptions import ConversionCancelledError


class ConversionContext:
    def __init__(self, logger=None, config=None, cancel_check=None):
        self.logger = logger or logging.getLogger('md2docx')
        self.config = config if config is not None else DEFAULT_CONFIG
        self.cancel_check = cancel_check
        self.timings = {}
        self._started = time.perf_counter()

    @contextmanager
    def stage(self, name):
        """Time a named stage; repeated stages accumulate."""
        start = time.perf_counter()
        try:
            yield
        finally:
            elapsed = (time.perf_counter() - start) * 1000
            self.timings[name] = self.timings.get(name, 0.0) + elapsed
            self.logger.debug("Stage %s took %.1f ms", name, elapsed)

    def elapsed_ms(self):
        return (time.perf_counter() - self._started) * 1000

    def is_cancelled(self):
        return bool(self.cancel_check and self.cancel_check())

    def check_cancelled(self, where=''):
        """Raise ConversionCancelledError if the caller asked to stop."""
        if self.is_cancelled():
            raise ConversionCancelledError(
                f"Conversion cancelled{' ' + where if where else ''}",
                details={'stage': where} if where else None,
            )
