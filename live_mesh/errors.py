"""
Exceptions raised across the live mesh pipeline
"""


class LiveMeshError(Exception):
    """Base class for all live mesh errors"""


class AcquisitionError(LiveMeshError):
    """The camera (or playback source) could not deliver frames"""


class DeviceNotFoundError(AcquisitionError):
    """No device matched the requested device id"""


class ReconstructionError(LiveMeshError):
    """A frame could not be triangulated (malformed frame or bad parameters)"""


class PipelineStateError(LiveMeshError):
    """Illegal pipeline lifecycle transition"""
