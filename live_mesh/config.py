#!/usr/bin/env python3
"""
Configuration for the live organized fast mesh viewer
Stores stream, reconstruction, scheduling and viewer defaults
"""

import numpy as np


class Config:
    """Defaults for the acquisition -> mesh -> viewer pipeline"""

    # ========================================================================
    # Acquisition
    # ========================================================================
    # Depth stream profile requested from the camera
    STREAM_WIDTH = 640
    STREAM_HEIGHT = 480
    STREAM_FPS = 30

    # Frames discarded after start so auto-exposure can settle
    WARMUP_FRAMES = 10

    # wait_for_frames() timeout (RealSense uses milliseconds)
    FRAME_TIMEOUT_MS = 1000

    # Samples with depth outside this range (meters) become NaN
    DEPTH_MIN = 0.0
    DEPTH_MAX = 10.0

    # Playback of recorded organized clouds (.npy)
    PLAYBACK_FPS = 30.0

    # ========================================================================
    # Mesh reconstruction
    # ========================================================================
    # Longest edge (meters) a triangle may have before it is treated as
    # bridging a depth discontinuity
    MAX_EDGE_LENGTH = 1.5

    # Grid step (pixels) between neighbouring triangle corners
    TRIANGLE_PIXEL_SIZE = 1

    # 'adaptive', 'right' or 'left'
    TRIANGULATION_MODE = 'adaptive'

    # ========================================================================
    # Scheduling
    # ========================================================================
    # Render tick back-off when no new mesh is ready (seconds)
    IDLE_SLEEP = 0.001

    # Driver poll interval while waiting for the viewer to close (seconds)
    STOP_POLL_INTERVAL = 0.001

    # Samples per frame rate window
    FPS_WINDOW = 100

    # ========================================================================
    # Viewer
    # ========================================================================
    WINDOW_NAME = "Live Organized Fast Mesh Viewer"
    WINDOW_WIDTH = 1280
    WINDOW_HEIGHT = 720
    BACKGROUND_COLOR = np.array([0.1, 0.1, 0.1])
    MESH_COLOR = np.array([0.7, 0.7, 0.7])
    POINT_SIZE = 2.0

    # Named geometries in the scene
    SURFACE_NAME = "surface"
    CLOUD_NAME = "cloud"

    # Mesh display modes
    REPRESENTATIONS = ('wireframe', 'surface')
    REPRESENTATION = 'wireframe'
