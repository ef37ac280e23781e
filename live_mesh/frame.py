#!/usr/bin/env python3
"""
Frame and mesh containers shared between the acquisition and render threads
"""

from dataclasses import dataclass, field
from typing import Optional

import numpy as np


def _freeze(array):
    array = np.asarray(array)
    array.setflags(write=False)
    return array


@dataclass(frozen=True)
class OrganizedCloud:
    """
    Organized point cloud delivered by a grabber

    Points keep the sensor's pixel grid, so grid neighbours are 3D neighbours.
    Invalid samples (no depth) are NaN. Arrays are read-only once built.

    Attributes:
        points: (H, W, 3) float array [X, Y, Z] in meters
        colors: (H, W, 3) float array [R, G, B] in 0-1, or None
        sequence: delivery number assigned by the grabber
        stamp: monotonic delivery time in seconds
    """
    points: np.ndarray
    colors: Optional[np.ndarray] = None
    sequence: int = 0
    stamp: float = 0.0

    def __post_init__(self):
        points = np.array(self.points, dtype=np.float32)
        if points.ndim != 3 or points.shape[2] != 3:
            raise ValueError(f"Organized cloud must be (H, W, 3), got {points.shape}")
        object.__setattr__(self, 'points', _freeze(points))

        if self.colors is not None:
            colors = np.array(self.colors, dtype=np.float32)
            if colors.shape != points.shape:
                raise ValueError(f"Colors {colors.shape} do not match points {points.shape}")
            object.__setattr__(self, 'colors', _freeze(colors))

    @classmethod
    def from_array(cls, data, sequence=0, stamp=0.0):
        """
        Build from an (H, W, 3) XYZ or (H, W, 6) XYZRGB array

        Args:
            data: organized array as stored by the playback recordings
            sequence: delivery number
            stamp: delivery time

        Returns:
            OrganizedCloud
        """
        data = np.asarray(data)
        if data.ndim != 3 or data.shape[2] not in (3, 6):
            raise ValueError(f"Expected (H, W, 3) or (H, W, 6) array, got {data.shape}")
        colors = data[:, :, 3:6] if data.shape[2] == 6 else None
        return cls(points=data[:, :, :3], colors=colors, sequence=sequence, stamp=stamp)

    @property
    def height(self):
        return self.points.shape[0]

    @property
    def width(self):
        return self.points.shape[1]

    @property
    def has_colors(self):
        return self.colors is not None

    def valid_mask(self):
        """(H, W) bool mask of finite samples"""
        return np.all(np.isfinite(self.points), axis=2)

    @property
    def valid_count(self):
        return int(self.valid_mask().sum())


@dataclass
class Mesh:
    """
    Triangle mesh reconstructed from one organized cloud

    Attributes:
        vertices: (M, 3) float array, only vertices used by a triangle
        triangles: (K, 3) int32 indices into vertices
        vertex_colors: (M, 3) float array or None
        source_sequence: sequence of the cloud it was built from
        source_stamp: stamp of the cloud it was built from
    """
    vertices: np.ndarray = field(default_factory=lambda: np.zeros((0, 3), dtype=np.float32))
    triangles: np.ndarray = field(default_factory=lambda: np.zeros((0, 3), dtype=np.int32))
    vertex_colors: Optional[np.ndarray] = None
    source_sequence: int = -1
    source_stamp: float = 0.0

    @property
    def num_triangles(self):
        return len(self.triangles)

    @property
    def num_vertices(self):
        return len(self.vertices)

    def is_empty(self):
        return self.num_triangles == 0
