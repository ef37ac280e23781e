"""
Live organized fast mesh: depth camera -> triangle mesh -> viewer
"""

from .config import Config
from .errors import (LiveMeshError, AcquisitionError, DeviceNotFoundError,
                     ReconstructionError, PipelineStateError)
from .frame import OrganizedCloud, Mesh
from .frame_rate import FrameRateMonitor
from .frame_slot import SharedFrameSlot, SlotContents
from .organized_mesh import TriangulationMode, reconstruct
from .camera_drivers import (Grabber, RealSenseGrabber, PlaybackGrabber, DeviceSpec,
                             DeviceInfo, list_devices, resolve_device, describe_devices)
from .handlers import AcquisitionHandler, RenderTickHandler
from .pipeline import FastMeshPipeline, PipelineState

__version__ = "0.1.0"

__all__ = [
    'Config',
    'LiveMeshError',
    'AcquisitionError',
    'DeviceNotFoundError',
    'ReconstructionError',
    'PipelineStateError',
    'OrganizedCloud',
    'Mesh',
    'FrameRateMonitor',
    'SharedFrameSlot',
    'SlotContents',
    'TriangulationMode',
    'reconstruct',
    'Grabber',
    'RealSenseGrabber',
    'PlaybackGrabber',
    'DeviceSpec',
    'DeviceInfo',
    'list_devices',
    'resolve_device',
    'describe_devices',
    'AcquisitionHandler',
    'RenderTickHandler',
    'FastMeshPipeline',
    'PipelineState',
]
