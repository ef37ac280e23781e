#!/usr/bin/env python3
"""
Fast triangulation of organized point clouds

Neighbouring samples in the sensor grid are connected directly, so a frame
is meshed in a few vectorized numpy passes without any search structure.

Every grid cell of side `triangle_pixel_size`

    a ---- b
    |      |
    c ---- d

is split into at most two triangles along one of its diagonals. A triangle
is kept only if its three corners are finite and none of its edges is
longer than `max_edge_length`, which drops faces bridging depth jumps.
"""

import logging
from enum import Enum

import numpy as np

from .config import Config
from .errors import ReconstructionError
from .frame import Mesh, OrganizedCloud

logger = logging.getLogger(__name__)


class TriangulationMode(Enum):
    """How each grid cell is cut into triangles"""
    ADAPTIVE_CUT = 'adaptive'   # diagonal with the smaller depth jump
    RIGHT_CUT = 'right'         # always along b-c
    LEFT_CUT = 'left'           # always along a-d

    @classmethod
    def parse(cls, value):
        """Accept a mode, its value ('adaptive') or its name ('ADAPTIVE_CUT')"""
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        for mode in cls:
            if text in (mode.value, mode.name.lower(), mode.value + '_cut'):
                return mode
        raise ValueError(f"Unknown triangulation mode: {value!r}")


def _corner_indices(height, width, step):
    """Flat indices of the a, b, c, d corners of every grid cell"""
    idx = np.arange(height * width).reshape(height, width)
    a = idx[0:height - step:step, 0:width - step:step]
    b = idx[0:height - step:step, step:width:step]
    c = idx[step:height:step, 0:width - step:step]
    d = idx[step:height:step, step:width:step]
    return a.ravel(), b.ravel(), c.ravel(), d.ravel()


def reconstruct(cloud,
                max_edge_length=Config.MAX_EDGE_LENGTH,
                triangle_pixel_size=Config.TRIANGLE_PIXEL_SIZE,
                triangulation_mode=Config.TRIANGULATION_MODE):
    """
    Triangulate an organized point cloud

    Args:
        cloud: OrganizedCloud, or an (H, W, 3) / (H, W, 6) array
        max_edge_length: longest allowed triangle edge in meters
        triangle_pixel_size: grid step between triangle corners
        triangulation_mode: TriangulationMode or its string value

    Returns:
        Mesh (possibly empty when the cloud has no valid samples)

    Raises:
        ReconstructionError: malformed cloud or invalid parameters
    """
    if not isinstance(cloud, OrganizedCloud):
        try:
            cloud = OrganizedCloud.from_array(cloud)
        except (TypeError, ValueError) as e:
            raise ReconstructionError(f"Not an organized cloud: {e}") from e

    try:
        mode = TriangulationMode.parse(triangulation_mode)
    except ValueError as e:
        raise ReconstructionError(str(e)) from e

    step = int(triangle_pixel_size)
    if step < 1 or step != triangle_pixel_size:
        raise ReconstructionError(f"triangle_pixel_size must be a positive integer, got {triangle_pixel_size}")
    if not max_edge_length > 0:
        raise ReconstructionError(f"max_edge_length must be positive, got {max_edge_length}")

    height, width = cloud.height, cloud.width
    if height <= step or width <= step:
        raise ReconstructionError(
            f"Cloud {width}x{height} too small for triangle pixel size {step}")

    points = cloud.points.reshape(-1, 3)
    finite = np.all(np.isfinite(points), axis=1)
    a, b, c, d = _corner_indices(height, width, step)

    max_sq = float(max_edge_length) ** 2

    def edge_ok(i, j):
        # NaN distances compare False, so non-finite corners fail here too
        with np.errstate(invalid='ignore'):
            sq = np.sum((points[i] - points[j]) ** 2, axis=1)
            return finite[i] & finite[j] & (sq <= max_sq)

    ab, ac, bd, cd = edge_ok(a, b), edge_ok(a, c), edge_ok(b, d), edge_ok(c, d)
    bc, ad = edge_ok(b, c), edge_ok(a, d)

    # Right cut triangles (share b-c), left cut triangles (share a-d)
    abc = ab & ac & bc
    bcd = bd & cd & bc
    acd = ac & cd & ad
    abd = ab & bd & ad

    if mode is TriangulationMode.RIGHT_CUT:
        use_left = np.zeros_like(abc)
    elif mode is TriangulationMode.LEFT_CUT:
        use_left = np.ones_like(abc)
    else:
        z = points[:, 2]
        with np.errstate(invalid='ignore'):
            jump_ad = np.nan_to_num(np.abs(z[a] - z[d]), nan=np.inf)
            jump_bc = np.nan_to_num(np.abs(z[b] - z[c]), nan=np.inf)
        right_any = abc | bcd
        left_any = acd | abd
        prefer_left = jump_ad < jump_bc
        use_left = (prefer_left & left_any) | (~prefer_left & ~right_any & left_any)

    use_right = ~use_left
    triangles = np.concatenate([
        np.stack([a, c, b], axis=1)[use_right & abc],
        np.stack([b, c, d], axis=1)[use_right & bcd],
        np.stack([a, c, d], axis=1)[use_left & acd],
        np.stack([a, d, b], axis=1)[use_left & abd],
    ])

    # Keep only referenced vertices
    used = np.unique(triangles)
    remap = np.full(len(points), -1, dtype=np.int64)
    remap[used] = np.arange(len(used))

    vertex_colors = None
    if cloud.has_colors:
        vertex_colors = cloud.colors.reshape(-1, 3)[used].copy()

    mesh = Mesh(
        vertices=points[used].copy(),
        triangles=remap[triangles].astype(np.int32).reshape(-1, 3),
        vertex_colors=vertex_colors,
        source_sequence=cloud.sequence,
        source_stamp=cloud.stamp,
    )
    logger.debug("Frame %d: %d triangles from %d valid samples",
                 cloud.sequence, mesh.num_triangles, int(finite.sum()))
    return mesh
