import logging

import numpy as np
import pytest

from fakes import FakeGrabber, FakeViewer, plane_cloud


@pytest.fixture
def grabber():
    return FakeGrabber()


@pytest.fixture
def viewer():
    return FakeViewer()


@pytest.fixture
def make_cloud():
    return plane_cloud


@pytest.fixture
def recorded_frames(tmp_path):
    """Directory with three (4, 5, 6) XYZRGB recordings"""
    for i in range(3):
        v, u = np.mgrid[0:4, 0:5]
        xyz = np.stack([u * 0.01, v * 0.01, np.full((4, 5), 1.0 + i)], axis=-1)
        rgb = np.full((4, 5, 3), 0.25)
        np.save(tmp_path / f"frame_{i:04d}.npy", np.concatenate([xyz, rgb], axis=-1))
    return tmp_path


@pytest.fixture(autouse=True)
def reset_live_mesh_logger():
    """setup_logging() binds handlers to the captured stdout of one test"""
    yield
    logger = logging.getLogger("live_mesh")
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
