#!/usr/bin/env python3
"""
Per-frame callbacks of the two pipeline threads

AcquisitionHandler runs on the grabber's thread for every delivered cloud,
RenderTickHandler runs on the viewer's thread for every display refresh.
They only meet through the SharedFrameSlot.
"""

import logging
import time
from dataclasses import dataclass, asdict

from .config import Config
from .frame_rate import FrameRateMonitor
from .organized_mesh import TriangulationMode, reconstruct

logger = logging.getLogger(__name__)


@dataclass
class AcquisitionStats:
    frames_received: int = 0
    reconstructions: int = 0
    skipped: int = 0
    failures: int = 0
    published: int = 0

    def as_dict(self):
        return asdict(self)


@dataclass
class RenderStats:
    rendered: int = 0
    idle_ticks: int = 0

    def as_dict(self):
        return asdict(self)


class AcquisitionHandler:
    """
    Reconstruct-if-idle frame callback

    If the slot still holds a mesh the viewer has not picked up, the new
    cloud only refreshes the slot's raw cloud and reconstruction is skipped.
    Otherwise the cloud is meshed here, outside the slot lock, and published.

    Args:
        slot: SharedFrameSlot shared with the render handler
        max_edge_length: longest triangle edge in meters
        triangle_pixel_size: grid step between triangle corners
        triangulation_mode: TriangulationMode or its string value
        monitor: FrameRateMonitor owned by this handler
        reconstruct_fn: mesh reconstruction function
    """

    def __init__(self, slot, max_edge_length=Config.MAX_EDGE_LENGTH,
                 triangle_pixel_size=Config.TRIANGLE_PIXEL_SIZE,
                 triangulation_mode=Config.TRIANGULATION_MODE,
                 monitor=None, reconstruct_fn=reconstruct):
        self.slot = slot
        self.max_edge_length = max_edge_length
        self.triangle_pixel_size = triangle_pixel_size
        self.triangulation_mode = TriangulationMode.parse(triangulation_mode)
        self.monitor = monitor if monitor is not None else FrameRateMonitor("computation")
        self.reconstruct_fn = reconstruct_fn
        self.stats = AcquisitionStats()

    def __call__(self, cloud):
        self.stats.frames_received += 1
        self.monitor.record_sample()

        if self.slot.refresh_frame(cloud):
            # Viewer is lagging: keep the pending mesh, only refresh the cloud
            self.stats.skipped += 1
            return

        self.stats.reconstructions += 1
        try:
            mesh = self.reconstruct_fn(cloud, self.max_edge_length,
                                       self.triangle_pixel_size, self.triangulation_mode)
        except Exception as e:
            self.stats.failures += 1
            logger.warning("Reconstruction failed on frame %d: %s", cloud.sequence, e)
            return

        if mesh is None or mesh.is_empty():
            self.stats.failures += 1
            logger.debug("Frame %d produced no triangles, not published", cloud.sequence)
            return

        self.slot.publish(mesh, cloud)
        self.stats.published += 1


class RenderTickHandler:
    """
    Display refresh callback

    Takes the latest mesh from the slot, if any, and replaces the displayed
    surface with it. With nothing new it sleeps briefly instead of spinning.

    Args:
        slot: SharedFrameSlot shared with the acquisition handler
        monitor: FrameRateMonitor owned by this handler
        surface_name: scene name of the mesh
        cloud_name: scene name of the raw cloud (show_cloud only)
        representation: 'wireframe' or 'surface'
        show_cloud: also display the raw cloud the mesh came from
        idle_sleep: back-off in seconds when there is nothing to draw
    """

    def __init__(self, slot, monitor=None, surface_name=Config.SURFACE_NAME,
                 cloud_name=Config.CLOUD_NAME, representation=Config.REPRESENTATION,
                 show_cloud=False, idle_sleep=Config.IDLE_SLEEP, reset_camera_on_first_mesh=True):
        self.slot = slot
        self.monitor = monitor if monitor is not None else FrameRateMonitor("visualization")
        self.surface_name = surface_name
        self.cloud_name = cloud_name
        if representation not in Config.REPRESENTATIONS:
            raise ValueError(f"Unknown representation: {representation!r}")
        self.representation = representation
        self.show_cloud = show_cloud
        self.idle_sleep = idle_sleep
        self.reset_camera_on_first_mesh = reset_camera_on_first_mesh
        self.stats = RenderStats()

    def __call__(self, viewer):
        contents = self.slot.try_take()
        if contents is None:
            self.stats.idle_ticks += 1
            time.sleep(self.idle_sleep)
            return

        viewer.update_mesh(contents.mesh, self.surface_name)
        viewer.set_representation(self.representation)
        if self.show_cloud and contents.frame is not None:
            viewer.update_cloud(contents.frame, self.cloud_name)

        if self.stats.rendered == 0 and self.reset_camera_on_first_mesh:
            viewer.reset_camera()

        self.stats.rendered += 1
        self.monitor.record_sample()
