#!/usr/bin/env python3
"""
Moving-window frame rate measurement

Each pipeline stage owns its own monitor; instances are never shared
between threads.
"""

import logging
import time

from .config import Config

logger = logging.getLogger(__name__)


class FrameRateMonitor:
    """
    Counts samples and reports the average rate every `window` samples

    Args:
        name: stage label used in the report, e.g. 'computation'
        window: samples per report
        clock: monotonic time source in seconds
        sink: optional callable(name, rate) receiving every report
    """

    def __init__(self, name, window=Config.FPS_WINDOW, clock=time.monotonic, sink=None):
        if window <= 0:
            raise ValueError("window must be positive")
        self.name = name
        self.window = window
        self.sink = sink
        self._clock = clock
        self.count = 0
        # Set by the first sample so start-up time is not measured
        self.window_start = None
        self.last_rate = None

    def record_sample(self):
        """
        Count one sample

        Returns:
            float rate in Hz when a window just closed, otherwise None
        """
        if self.window_start is None:
            self.window_start = self._clock()
        self.count += 1
        if self.count < self.window:
            return None

        now = self._clock()
        elapsed = now - self.window_start
        rate = self.count / elapsed if elapsed > 0 else float('inf')

        self.count = 0
        self.window_start = now
        self.last_rate = rate

        logger.info("Average framerate(%s): %.2f Hz", self.name, rate)
        if self.sink is not None:
            self.sink(self.name, rate)
        return rate

    def reset(self):
        """Drop the current window; the next sample starts a new one"""
        self.count = 0
        self.window_start = None
