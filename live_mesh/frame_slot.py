#!/usr/bin/env python3
"""
Single-slot mailbox between the acquisition thread and the render thread

Holds the most recent mesh and its source cloud. Publishing overwrites,
taking empties; nothing is ever queued.
"""

import threading
from typing import NamedTuple, Optional

from .frame import Mesh, OrganizedCloud


class SlotContents(NamedTuple):
    mesh: Optional[Mesh]
    frame: Optional[OrganizedCloud]


class SharedFrameSlot:
    """
    Latest-frame slot guarded by one lock

    `dirty` is True iff the contents were published (or refreshed) and not
    yet taken by the consumer. The lock only covers reference swaps.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._mesh = None
        self._frame = None
        self._dirty = False

        self.publish_count = 0
        self.take_count = 0
        self.overwrite_count = 0
        self.refresh_count = 0

    @property
    def dirty(self):
        with self._lock:
            return self._dirty

    def publish(self, mesh, frame):
        """Replace the contents with a new mesh/cloud pair (last write wins)"""
        with self._lock:
            if self._dirty:
                self.overwrite_count += 1
            self._mesh = mesh
            self._frame = frame
            self._dirty = True
            self.publish_count += 1

    def refresh_frame(self, frame):
        """
        Replace only the raw cloud if the consumer has not caught up yet

        The in-flight mesh is kept as is.

        Returns:
            True if the slot was still dirty and the cloud was replaced,
            False if the slot is idle (caller should reconstruct)
        """
        with self._lock:
            if not self._dirty:
                return False
            self._frame = frame
            self.refresh_count += 1
            return True

    def try_take(self):
        """
        Take the contents without blocking

        Returns:
            SlotContents(mesh, frame), or None when nothing new was published
        """
        with self._lock:
            if not self._dirty:
                return None
            contents = SlotContents(self._mesh, self._frame)
            self._mesh = None
            self._frame = None
            self._dirty = False
            self.take_count += 1
            return contents

    def clear(self):
        """Drop whatever the slot holds"""
        with self._lock:
            self._mesh = None
            self._frame = None
            self._dirty = False
