#!/usr/bin/env python3
"""
Live organized fast mesh viewer (run from a source checkout)

Usage:
    python scripts/live_fast_mesh.py [device_id] [--playback DIR] [--solid] ...
"""

import os
import sys

sys.path.append(os.path.join(os.path.dirname(__file__), '..'))
from live_mesh.cli import main

if __name__ == "__main__":
    sys.exit(main())
