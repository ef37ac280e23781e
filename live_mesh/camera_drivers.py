#!/usr/bin/env python3
"""
Frame grabbers for organized point clouds

A grabber owns its delivery thread: after start() it calls every registered
callback with an OrganizedCloud for each new frame, and stop() returns only
once that thread has exited, so no callback runs after stop().
"""

import glob
import logging
import os
import re
import threading
import time
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from .config import Config
from .errors import AcquisitionError, DeviceNotFoundError
from .frame import OrganizedCloud

logger = logging.getLogger(__name__)

try:
    import pyrealsense2 as rs
    REALSENSE_AVAILABLE = True
except ImportError:
    logger.warning("pyrealsense2 not found. Install with: pip3 install pyrealsense2")
    REALSENSE_AVAILABLE = False


# ============================================================================
# Device addressing
# ============================================================================

@dataclass(frozen=True)
class DeviceSpec:
    """
    Parsed device id

    '' -> first device, '#N' -> N-th device (1-based),
    'bus@address' -> USB bus / address pair, anything else -> serial number
    """
    kind: str
    index: int = 0
    bus: int = 0
    address: int = 0
    serial: str = ''

    @classmethod
    def parse(cls, text):
        text = (text or '').strip()
        if not text:
            return cls(kind='first')

        match = re.fullmatch(r'#(\d+)', text)
        if match:
            index = int(match.group(1))
            if index < 1:
                raise ValueError(f"Device index must start at #1, got {text!r}")
            return cls(kind='index', index=index)

        match = re.fullmatch(r'(\d+)@(\d+)', text)
        if match:
            return cls(kind='bus_address', bus=int(match.group(1)), address=int(match.group(2)))

        return cls(kind='serial', serial=text)


@dataclass(frozen=True)
class DeviceInfo:
    """One enumerated camera"""
    index: int
    name: str
    serial: str
    vendor: str = 'Intel'
    port: str = ''
    bus: int = None
    address: int = None
    has_color: bool = False


def _usb_bus_address(port):
    """Find (busnum, devnum) for a sysfs physical port path (Linux only)"""
    if not port:
        return None, None
    path = Path(port)
    for parent in [path] + list(path.parents):
        busnum, devnum = parent / 'busnum', parent / 'devnum'
        try:
            if busnum.is_file() and devnum.is_file():
                return int(busnum.read_text().strip()), int(devnum.read_text().strip())
        except (OSError, ValueError):
            return None, None
    return None, None


def list_devices():
    """
    Enumerate connected RealSense cameras

    Returns:
        list of DeviceInfo (empty when the SDK is unavailable)
    """
    if not REALSENSE_AVAILABLE:
        return []

    devices = []
    for i, dev in enumerate(rs.context().query_devices()):
        port = ''
        if dev.supports(rs.camera_info.physical_port):
            port = dev.get_info(rs.camera_info.physical_port)
        bus, address = _usb_bus_address(port)

        has_color = False
        for sensor in dev.query_sensors():
            if any(p.stream_type() == rs.stream.color for p in sensor.get_stream_profiles()):
                has_color = True
                break

        devices.append(DeviceInfo(
            index=i + 1,
            name=dev.get_info(rs.camera_info.name),
            serial=dev.get_info(rs.camera_info.serial_number),
            port=port,
            bus=bus,
            address=address,
            has_color=has_color,
        ))
    return devices


def resolve_device(spec, devices):
    """
    Pick the device a DeviceSpec refers to

    Args:
        spec: DeviceSpec or device id string
        devices: list of DeviceInfo from list_devices()

    Returns:
        DeviceInfo

    Raises:
        DeviceNotFoundError: nothing matches
    """
    if not isinstance(spec, DeviceSpec):
        spec = DeviceSpec.parse(spec)

    if not devices:
        raise DeviceNotFoundError("No devices connected.")

    if spec.kind == 'first':
        return devices[0]

    if spec.kind == 'index':
        if spec.index > len(devices):
            raise DeviceNotFoundError(
                f"Device #{spec.index} requested but only {len(devices)} connected")
        return devices[spec.index - 1]

    if spec.kind == 'bus_address':
        for device in devices:
            if device.bus == spec.bus and device.address == spec.address:
                return device
        raise DeviceNotFoundError(f"No device connected at {spec.bus}@{spec.address}")

    for device in devices:
        if device.serial == spec.serial:
            return device
    raise DeviceNotFoundError(f"No device with serial number '{spec.serial}'")


def describe_devices(devices):
    """Human readable enumeration printed by --help"""
    if not devices:
        return "No devices connected."

    lines = []
    for device in devices:
        connected = f"{device.bus} @ {device.address}" if device.bus is not None else (device.port or 'unknown')
        lines.append(
            f"Device: {device.index}, vendor: {device.vendor}, product: {device.name}, "
            f"connected: {connected}, serial number: '{device.serial}'"
        )
    lines.append("device_id may be #1, #2, ... for the first second etc device in the list or")
    lines.append("                 bus@address for the device connected to a specific usb-bus / address combination (works only in Linux) or")
    lines.append("                 <serial-number>")
    return "\n".join(lines)


# ============================================================================
# Grabbers
# ============================================================================

class Grabber:
    """Base class: callback registry and the delivery thread"""

    name = "grabber"

    def __init__(self):
        self._callbacks = {}
        self._callbacks_lock = threading.Lock()
        self._next_handle = 0
        self._stop_event = threading.Event()
        self._thread = None
        self.frames_delivered = 0

    # ------------------------------------------------------------------
    # Callback registry
    # ------------------------------------------------------------------
    def register_callback(self, callback):
        """Register callback(OrganizedCloud); returns a handle for unregister"""
        with self._callbacks_lock:
            handle = self._next_handle
            self._next_handle += 1
            self._callbacks[handle] = callback
        return handle

    def unregister_callback(self, handle):
        with self._callbacks_lock:
            self._callbacks.pop(handle, None)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self):
        """Open the source and start delivering frames"""
        if self.is_running():
            return
        if self._thread is not None:
            # Delivery thread ended on its own: release the source first
            self.stop()
        self._open()
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name=f"{self.name}-grabber", daemon=True)
        self._thread.start()

    def stop(self):
        """Stop delivering frames; no callback runs once this returns"""
        thread = self._thread
        if thread is None:
            return
        self._stop_event.set()
        if thread is not threading.current_thread():
            thread.join()
        self._thread = None
        self._close()

    def is_running(self):
        return self._thread is not None and self._thread.is_alive()

    def provides_color(self):
        """True if delivered clouds carry colors"""
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Delivery thread
    # ------------------------------------------------------------------
    def _run(self):
        while not self._stop_event.is_set():
            try:
                grabbed = self._grab()
            except AcquisitionError as e:
                logger.error("✗ %s: %s", self.name, e)
                self._stop_event.wait(0.1)
                continue
            except Exception:
                logger.exception("✗ %s: frame grab failed, frame dropped", self.name)
                self._stop_event.wait(0.1)
                continue
            if grabbed is None:
                continue

            points, colors = grabbed
            try:
                cloud = OrganizedCloud(points=points, colors=colors,
                                       sequence=self.frames_delivered, stamp=time.monotonic())
            except ValueError as e:
                logger.error("✗ %s: malformed frame dropped: %s", self.name, e)
                continue
            self.frames_delivered += 1
            self._dispatch(cloud)

    def _dispatch(self, cloud):
        with self._callbacks_lock:
            callbacks = list(self._callbacks.values())
        for callback in callbacks:
            try:
                callback(cloud)
            except Exception:
                logger.exception("Frame callback failed on frame %d", cloud.sequence)

    # Subclass hooks
    def _open(self):
        pass

    def _grab(self):
        """Return (points, colors) for the next frame, or None if none is ready"""
        raise NotImplementedError

    def _close(self):
        pass


class RealSenseGrabber(Grabber):
    """Organized clouds from an Intel RealSense camera"""

    name = "realsense"

    def __init__(self, device_id="", width=Config.STREAM_WIDTH, height=Config.STREAM_HEIGHT,
                 fps=Config.STREAM_FPS, warmup_frames=Config.WARMUP_FRAMES,
                 timeout_ms=Config.FRAME_TIMEOUT_MS):
        if not REALSENSE_AVAILABLE:
            raise ImportError("pyrealsense2 not available. Install with: pip3 install pyrealsense2")
        super().__init__()
        self.spec = DeviceSpec.parse(device_id)
        self.width = width
        self.height = height
        self.fps = fps
        self.warmup_frames = warmup_frames
        self.timeout_ms = timeout_ms

        self.pipeline = None
        self.align = None
        self.depth_scale = 0.001
        self._device = None

    @property
    def device(self):
        """DeviceInfo this grabber streams from (resolved on first use)"""
        if self._device is None:
            self._device = resolve_device(self.spec, list_devices())
        return self._device

    def provides_color(self):
        return self.device.has_color

    def _open(self):
        device = self.device
        self.pipeline = rs.pipeline()
        config = rs.config()
        config.enable_device(device.serial)
        config.enable_stream(rs.stream.depth, self.width, self.height, rs.format.z16, self.fps)
        if device.has_color:
            config.enable_stream(rs.stream.color, self.width, self.height, rs.format.rgb8, self.fps)

        try:
            profile = self.pipeline.start(config)
        except RuntimeError as e:
            self.pipeline = None
            raise AcquisitionError(f"Failed to start {device.name}: {e}") from e

        self.depth_scale = profile.get_device().first_depth_sensor().get_depth_scale()

        # Align depth to color so both share one pixel grid
        self.align = rs.align(rs.stream.color) if device.has_color else None

        # Skip first few frames for stability
        for _ in range(self.warmup_frames):
            try:
                self.pipeline.wait_for_frames(timeout_ms=self.timeout_ms)
            except RuntimeError:
                pass

        logger.info("✓ %s started: %dx%d @ %dfps (serial %s)",
                    device.name, self.width, self.height, self.fps, device.serial)

    def _grab(self):
        try:
            frames = self.pipeline.wait_for_frames(timeout_ms=self.timeout_ms)
        except RuntimeError as e:
            logger.debug("No frame from %s: %s", self.name, e)
            return None

        if self.align is not None:
            frames = self.align.process(frames)

        depth_frame = frames.get_depth_frame()
        if not depth_frame:
            return None

        intrinsics = depth_frame.profile.as_video_stream_profile().intrinsics
        depth_image = np.asanyarray(depth_frame.get_data())
        height, width = depth_image.shape

        # Deproject every pixel, keeping the grid (vectorized)
        v, u = np.mgrid[0:height, 0:width]
        z = depth_image.astype(np.float32) * self.depth_scale
        x = (u - intrinsics.ppx) * z / intrinsics.fx
        y = (v - intrinsics.ppy) * z / intrinsics.fy

        points = np.stack([x, y, z], axis=-1).astype(np.float32)
        invalid = (z <= Config.DEPTH_MIN) | (z > Config.DEPTH_MAX)
        points[invalid] = np.nan

        colors = None
        if self.align is not None:
            color_frame = frames.get_color_frame()
            if not color_frame:
                return None
            colors = np.asanyarray(color_frame.get_data()).astype(np.float32) / 255.0

        return points, colors

    def _close(self):
        if self.pipeline:
            self.pipeline.stop()
            self.pipeline = None
            logger.info("✓ %s stopped", self.device.name)


def load_organized_cloud(filepath):
    """
    Load an organized cloud saved as .npy

    Args:
        filepath: (H, W, 3) XYZ or (H, W, 6) XYZRGB array file

    Returns:
        (points, colors) with colors None for XYZ files
    """
    try:
        data = np.load(filepath)
    except (OSError, ValueError, EOFError) as e:
        raise AcquisitionError(f"{filepath}: unreadable recording: {e}") from e
    if data.ndim != 3 or data.shape[2] not in (3, 6):
        raise AcquisitionError(f"{filepath}: expected (H, W, 3) or (H, W, 6), got {data.shape}")
    colors = data[:, :, 3:6] if data.shape[2] == 6 else None
    return data[:, :, :3], colors


class PlaybackGrabber(Grabber):
    """
    Replays recorded organized clouds as if they came from a camera

    Args:
        source: directory of .npy files (played in name order) or a list of
            (H, W, 3) / (H, W, 6) arrays
        fps: playback rate, <= 0 delivers as fast as possible
        loop: restart from the first frame after the last one
    """

    name = "playback"

    def __init__(self, source, fps=Config.PLAYBACK_FPS, loop=True):
        super().__init__()
        self.source = source
        self.fps = fps
        self.loop = loop
        self._items = None
        self._index = 0
        self._next_due = 0.0

    def _load_items(self):
        if self._items is not None:
            return self._items

        if isinstance(self.source, (str, os.PathLike)):
            if not os.path.isdir(self.source):
                raise DeviceNotFoundError(f"Playback directory not found: {self.source}")
            items = sorted(glob.glob(os.path.join(str(self.source), "*.npy")))
        else:
            items = [np.asarray(item) for item in self.source]

        if len(items) == 0:
            raise DeviceNotFoundError(f"No recorded frames in {self.source}")
        self._items = items
        return items

    def _read(self, item):
        if isinstance(item, str):
            return load_organized_cloud(item)
        if item.ndim != 3 or item.shape[2] not in (3, 6):
            raise AcquisitionError(f"Expected (H, W, 3) or (H, W, 6) array, got {item.shape}")
        return item[:, :, :3], (item[:, :, 3:6] if item.shape[2] == 6 else None)

    def provides_color(self):
        _, colors = self._read(self._load_items()[0])
        return colors is not None

    def _open(self):
        items = self._load_items()
        self._index = 0
        self._next_due = time.monotonic()
        logger.info("✓ Playback started: %d frames @ %s fps", len(items),
                    self.fps if self.fps > 0 else 'max')

    def _grab(self):
        if self.fps > 0:
            delay = self._next_due - time.monotonic()
            if delay > 0 and self._stop_event.wait(delay):
                return None
            self._next_due = max(self._next_due, time.monotonic() - 1.0 / self.fps) + 1.0 / self.fps

        if self._index >= len(self._items):
            if not self.loop:
                # Exhausted: idle until stopped
                self._stop_event.wait(0.01)
                return None
            self._index = 0

        item = self._items[self._index]
        self._index += 1
        return self._read(item)
