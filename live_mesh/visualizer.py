#!/usr/bin/env python3
"""
Open3D viewer for live meshes

The viewer runs its own thread which owns the Open3D window. Callbacks
registered with run_on_visualization_thread() are called once per display
tick on that thread, which is where update_mesh() / update_cloud() must be
called from.
"""

import logging
import threading

import numpy as np
import open3d as o3d

from .config import Config

logger = logging.getLogger(__name__)


def mesh_to_open3d(mesh, default_color=Config.MESH_COLOR):
    """
    Convert a Mesh to an Open3D triangle mesh

    Args:
        mesh: live_mesh Mesh
        default_color: uniform color when the mesh has no vertex colors

    Returns:
        o3d.geometry.TriangleMesh
    """
    o3d_mesh = o3d.geometry.TriangleMesh()
    o3d_mesh.vertices = o3d.utility.Vector3dVector(np.asarray(mesh.vertices, dtype=np.float64))
    o3d_mesh.triangles = o3d.utility.Vector3iVector(np.asarray(mesh.triangles, dtype=np.int32))
    if mesh.vertex_colors is not None:
        o3d_mesh.vertex_colors = o3d.utility.Vector3dVector(np.asarray(mesh.vertex_colors, dtype=np.float64))
    elif len(mesh.vertices) > 0:
        o3d_mesh.paint_uniform_color(default_color)
    o3d_mesh.compute_vertex_normals()
    return o3d_mesh


def cloud_to_open3d(cloud):
    """
    Convert the finite samples of an OrganizedCloud to an Open3D point cloud

    Returns:
        o3d.geometry.PointCloud
    """
    valid = cloud.valid_mask()
    pcd = o3d.geometry.PointCloud()
    pcd.points = o3d.utility.Vector3dVector(cloud.points[valid].astype(np.float64))
    if cloud.has_colors:
        pcd.colors = o3d.utility.Vector3dVector(cloud.colors[valid].astype(np.float64))
    return pcd


class MeshViewer:
    """Real-time mesh viewer using Open3D"""

    def __init__(self, window_name=Config.WINDOW_NAME, width=Config.WINDOW_WIDTH,
                 height=Config.WINDOW_HEIGHT, point_size=Config.POINT_SIZE):
        self.window_name = window_name
        self.width = width
        self.height = height
        self.point_size = point_size

        self.vis = None
        self._geometries = {}
        self._bbox_initialized = False
        self._reset_pending = False
        self._representation = Config.REPRESENTATION

        self._callbacks = {}
        self._callbacks_lock = threading.Lock()
        self._close_event = threading.Event()
        self._stopped = threading.Event()
        self._thread = None

    # ------------------------------------------------------------------
    # Refresh loop
    # ------------------------------------------------------------------
    def run_on_visualization_thread(self, callback, name):
        """Call callback(viewer) on every display tick; same name replaces"""
        with self._callbacks_lock:
            self._callbacks[name] = callback

    def remove_visualization_callback(self, name):
        with self._callbacks_lock:
            self._callbacks.pop(name, None)

    def start(self):
        """Open the window on the viewer thread"""
        if self._thread is not None:
            return
        self._close_event.clear()
        self._stopped.clear()
        self._thread = threading.Thread(target=self._run, name="viewer", daemon=True)
        self._thread.start()

    def _run(self):
        vis = o3d.visualization.Visualizer()
        if not vis.create_window(window_name=self.window_name, width=self.width, height=self.height):
            logger.error("✗ Could not create viewer window")
            self._stopped.set()
            return

        # Render options
        opt = vis.get_render_option()
        opt.background_color = Config.BACKGROUND_COLOR
        opt.point_size = self.point_size
        opt.mesh_show_back_face = True
        opt.mesh_show_wireframe = self._representation == 'wireframe'

        self.vis = vis
        logger.info("✓ Viewer initialized")

        try:
            while not self._close_event.is_set():
                if not vis.poll_events():
                    break

                with self._callbacks_lock:
                    callbacks = list(self._callbacks.values())
                for callback in callbacks:
                    try:
                        callback(self)
                    except Exception:
                        logger.exception("Visualization callback failed")

                if self._reset_pending:
                    vis.reset_view_point(True)
                    self._reset_pending = False

                vis.update_renderer()
        finally:
            vis.destroy_window()
            self.vis = None
            self._geometries.clear()
            self._stopped.set()
            logger.info("✓ Viewer closed")

    def has_stopped(self):
        """True once the window was closed"""
        return self._stopped.is_set()

    def close(self):
        """Close the window and wait for the viewer thread"""
        self._close_event.set()
        thread = self._thread
        if thread is None:
            self._stopped.set()
            return
        if thread is not threading.current_thread():
            thread.join()
        self._thread = None

    # ------------------------------------------------------------------
    # Scene updates (viewer thread only)
    # ------------------------------------------------------------------
    def _replace_geometry(self, name, geometry):
        old = self._geometries.pop(name, None)
        if old is not None:
            self.vis.remove_geometry(old, reset_bounding_box=False)
        self.vis.add_geometry(geometry, reset_bounding_box=not self._bbox_initialized)
        self._bbox_initialized = True
        self._geometries[name] = geometry

    def update_mesh(self, mesh, name=Config.SURFACE_NAME):
        """Show mesh under name, replacing whatever was shown under it"""
        self._replace_geometry(name, mesh_to_open3d(mesh))

    def update_cloud(self, cloud, name=Config.CLOUD_NAME):
        """Show the raw cloud under name, replacing the previous one"""
        self._replace_geometry(name, cloud_to_open3d(cloud))

    def remove_shape(self, name):
        old = self._geometries.pop(name, None)
        if old is not None and self.vis is not None:
            self.vis.remove_geometry(old, reset_bounding_box=False)

    def set_representation(self, representation):
        """'wireframe' or 'surface'"""
        if representation not in Config.REPRESENTATIONS:
            raise ValueError(f"Unknown representation: {representation!r}")
        self._representation = representation
        if self.vis is not None:
            self.vis.get_render_option().mesh_show_wireframe = representation == 'wireframe'

    @property
    def representation(self):
        return self._representation

    def reset_camera(self):
        """Fit the view to the scene on the next tick"""
        self._reset_pending = True
