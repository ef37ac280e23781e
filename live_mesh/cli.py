#!/usr/bin/env python3
"""
Live organized fast mesh viewer

Usage:
    live-fast-mesh [device_id] [options]
"""

import argparse
import logging
import signal
import sys

from .camera_drivers import (PlaybackGrabber, RealSenseGrabber, describe_devices,
                             list_devices)
from .config import Config
from .errors import AcquisitionError
from .logging_config import setup_logging
from .organized_mesh import TriangulationMode
from .pipeline import FastMeshPipeline

logger = logging.getLogger(__name__)


def build_parser():
    parser = argparse.ArgumentParser(
        prog='live-fast-mesh',
        description='Triangulate a live organized point cloud stream and display the latest mesh',
        add_help=False,
    )
    parser.add_argument('device_id', nargs='?', default='',
                        help='#N, bus@address or serial number (default: first device)')
    parser.add_argument('-h', '--help', action='store_true', help='Show this help and the connected devices')
    parser.add_argument('--playback', type=str, default=None,
                        help='Replay organized clouds (.npy) from this directory instead of a camera')
    parser.add_argument('--fps', type=float, default=None, help='Stream / playback frame rate')
    parser.add_argument('--width', type=int, default=Config.STREAM_WIDTH, help='Depth stream width')
    parser.add_argument('--height', type=int, default=Config.STREAM_HEIGHT, help='Depth stream height')
    parser.add_argument('--max-edge-length', type=float, default=Config.MAX_EDGE_LENGTH,
                        help='Longest triangle edge in meters')
    parser.add_argument('--triangle-pixel-size', type=int, default=Config.TRIANGLE_PIXEL_SIZE,
                        help='Grid step between triangle corners')
    parser.add_argument('--triangulation', choices=[m.value for m in TriangulationMode],
                        default=Config.TRIANGULATION_MODE, help='How grid cells are cut into triangles')
    parser.add_argument('--solid', action='store_true', help='Render a solid surface instead of a wireframe')
    parser.add_argument('--show-cloud', action='store_true', help='Also display the raw point cloud')
    parser.add_argument('--log-level', default='INFO', help='DEBUG, INFO, WARNING, ERROR')
    parser.add_argument('--log-file', default=None, help='Also write logs to this file')
    return parser


def usage(parser, devices):
    """Print usage and the device enumeration diagnostics"""
    print(parser.format_help())
    print(describe_devices(devices))


def make_grabber(args):
    if args.playback:
        return PlaybackGrabber(args.playback, fps=args.fps if args.fps is not None else Config.PLAYBACK_FPS)
    return RealSenseGrabber(
        args.device_id,
        width=args.width,
        height=args.height,
        fps=int(args.fps) if args.fps is not None else Config.STREAM_FPS,
    )


def make_viewer():
    from .visualizer import MeshViewer
    return MeshViewer()


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.help:
        usage(parser, list_devices())
        return 1

    setup_logging(args.log_level, args.log_file)

    # One-time capability check before anything streams
    try:
        grabber = make_grabber(args)
        has_color = grabber.provides_color()
    except (AcquisitionError, ImportError) as e:
        logger.error("✗ %s", e)
        usage(parser, list_devices())
        return 1

    if has_color:
        logger.info("PointXYZRGB mode enabled.")
    else:
        logger.info("PointXYZ mode enabled.")

    pipeline = FastMeshPipeline(
        grabber,
        make_viewer(),
        max_edge_length=args.max_edge_length,
        triangle_pixel_size=args.triangle_pixel_size,
        triangulation_mode=args.triangulation,
        representation='surface' if args.solid else 'wireframe',
        show_cloud=args.show_cloud,
    )

    previous_handler = signal.signal(signal.SIGINT, lambda signum, frame: pipeline.request_stop())
    try:
        pipeline.run()
    except AcquisitionError as e:
        logger.error("✗ %s", e)
        return 1
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    logger.info("Done!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
