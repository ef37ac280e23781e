#!/usr/bin/env python3
"""
Grabber -> mesh -> viewer driver

Wires an acquisition source and a viewer together through one
SharedFrameSlot and walks them through CREATED -> RUNNING -> STOPPING ->
STOPPED.
"""

import logging
import threading
import time
from enum import Enum

from .config import Config
from .errors import PipelineStateError
from .frame_rate import FrameRateMonitor
from .frame_slot import SharedFrameSlot
from .handlers import AcquisitionHandler, RenderTickHandler
from .organized_mesh import reconstruct

logger = logging.getLogger(__name__)


class PipelineState(Enum):
    CREATED = 'created'
    RUNNING = 'running'
    STOPPING = 'stopping'
    STOPPED = 'stopped'


class FastMeshPipeline:
    """
    Live organized fast mesh pipeline

    Args:
        grabber: acquisition source (see camera_drivers.Grabber)
        viewer: visualization target (see visualizer.MeshViewer)
        max_edge_length: longest triangle edge in meters
        triangle_pixel_size: grid step between triangle corners
        triangulation_mode: 'adaptive', 'right' or 'left'
        representation: 'wireframe' or 'surface'
        show_cloud: also display the raw cloud
        fps_window: samples per frame rate report
        reconstruct_fn: mesh reconstruction function
    """

    VIZ_CALLBACK_NAME = "viz_cb"

    def __init__(self, grabber, viewer,
                 max_edge_length=Config.MAX_EDGE_LENGTH,
                 triangle_pixel_size=Config.TRIANGLE_PIXEL_SIZE,
                 triangulation_mode=Config.TRIANGULATION_MODE,
                 representation=Config.REPRESENTATION,
                 show_cloud=False,
                 fps_window=Config.FPS_WINDOW,
                 reconstruct_fn=reconstruct):
        self.grabber = grabber
        self.viewer = viewer
        self.slot = SharedFrameSlot()

        self.acquisition = AcquisitionHandler(
            self.slot,
            max_edge_length=max_edge_length,
            triangle_pixel_size=triangle_pixel_size,
            triangulation_mode=triangulation_mode,
            monitor=FrameRateMonitor("computation", window=fps_window),
            reconstruct_fn=reconstruct_fn,
        )
        self.render = RenderTickHandler(
            self.slot,
            monitor=FrameRateMonitor("visualization", window=fps_window),
            representation=representation,
            show_cloud=show_cloud,
        )

        self.state = PipelineState.CREATED
        self._state_lock = threading.Lock()
        self._stop_requested = threading.Event()
        self._callback_handle = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self):
        """CREATED -> RUNNING"""
        with self._state_lock:
            if self.state is not PipelineState.CREATED:
                raise PipelineStateError(f"Cannot start a pipeline in state {self.state.value}")

            self._callback_handle = self.grabber.register_callback(self.acquisition)
            self.viewer.run_on_visualization_thread(self.render, self.VIZ_CALLBACK_NAME)
            self.viewer.start()
            try:
                self.grabber.start()
            except Exception:
                self.grabber.unregister_callback(self._callback_handle)
                self.viewer.remove_visualization_callback(self.VIZ_CALLBACK_NAME)
                self.viewer.close()
                self.state = PipelineState.STOPPED
                raise

            self.state = PipelineState.RUNNING
        logger.info("✓ Pipeline running")

    def request_stop(self):
        """Ask run() to leave its wait loop (safe from any thread)"""
        self._stop_requested.set()

    def run(self, poll_interval=Config.STOP_POLL_INTERVAL):
        """Start if needed, block until the viewer closes or a stop is requested, then stop"""
        if self.state is PipelineState.CREATED:
            self.start()
        try:
            while not self.viewer.has_stopped() and not self._stop_requested.is_set():
                time.sleep(poll_interval)
        finally:
            self.stop()

    def stop(self):
        """RUNNING -> STOPPING -> STOPPED; no-op once stopped"""
        with self._state_lock:
            if self.state is PipelineState.STOPPED:
                return
            if self.state is PipelineState.CREATED:
                self.state = PipelineState.STOPPED
                return

            self.state = PipelineState.STOPPING
            logger.info("Stopping pipeline...")

            # Synchronous: no acquisition callback runs after this
            self.grabber.stop()
            self.grabber.unregister_callback(self._callback_handle)
            self._callback_handle = None

            self.viewer.remove_visualization_callback(self.VIZ_CALLBACK_NAME)
            self.viewer.close()

            self.slot.clear()
            self.state = PipelineState.STOPPED

        stats = self.stats()
        logger.info("✓ Pipeline stopped (%s)", self._summary_line(stats))
        logger.debug("Pipeline stats: %s", stats)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------
    def stats(self):
        return {
            'state': self.state.value,
            'acquisition': self.acquisition.stats.as_dict(),
            'render': self.render.stats.as_dict(),
            'slot': {
                'published': self.slot.publish_count,
                'taken': self.slot.take_count,
                'overwritten': self.slot.overwrite_count,
                'refreshed': self.slot.refresh_count,
            },
            'computation_rate': self.acquisition.monitor.last_rate,
            'visualization_rate': self.render.monitor.last_rate,
        }

    @staticmethod
    def _summary_line(stats):
        acq = stats['acquisition']
        return (f"frames: {acq['frames_received']}, meshes: {acq['published']}, "
                f"skipped: {acq['skipped']}, failed: {acq['failures']}, "
                f"rendered: {stats['render']['rendered']}")
