"""
Command line tools.

    houlog inspect debug.geo [--json]
    houlog serve --port 9090 --snapshot-dir ./live
    houlog demo --out demo.geo --frames 48
    houlog demo --live --port 9090
"""

import argparse
import json
import math
import sys
from typing import List, Optional

import numpy as np
from scipy.spatial.transform import Rotation as SciRotation

from .bridge import BridgeServer, BridgeServerConfig, RemoteSession
from .config import LoggerConfig
from .convert import Line
from .errors import HoulogError
from .logger import DebugLogger, LoggerSlot
from .loggable import Armature, Capsule, Mesh, Polygon, Sphere, Transform
from .logging_config import configure_from_env, enable_console_logging
from .replay import validate_recording
from .targets import FileTarget, LiveSessionTarget


def _print_summary(result: dict) -> None:
    stats = result.get("stats", {})
    print(f"valid: {result['valid']}")
    if stats:
        print(f"points: {stats['point_count']}")
        print(f"frames: {stats['frame_count']}")
        print(f"kinds: {', '.join(stats['kinds']) or '-'}")
        print(f"names: {', '.join(stats['names']) or '-'}")
    for warning in result["warnings"]:
        print(f"warning: {warning}")
    for error in result["errors"]:
        print(f"error: {error}")


def _cmd_inspect(args: argparse.Namespace) -> int:
    result = validate_recording(args.file)
    if args.json:
        print(json.dumps(result, indent=2))
    else:
        _print_summary(result)
    return 0 if result["valid"] else 1


def _cmd_serve(args: argparse.Namespace) -> int:
    config = BridgeServerConfig(
        host=args.host,
        port=args.port,
        containers=tuple(args.container) or ("/obj/recordings",),
        snapshot_dir=args.snapshot_dir,
    )
    server = BridgeServer(config)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.shutdown()
    return 0


def record_demo_scene(dlog: DebugLogger, frames: int) -> None:
    """Record a small animated scene, one frame per step."""
    quad = Mesh.from_faces(
        [(-1.0, 0.0, -1.0), (1.0, 0.0, -1.0), (1.0, 0.0, 1.0), (-1.0, 0.0, 1.0)],
        [[0, 1, 2, 3]],
    )
    for i in range(frames):
        if i:
            dlog.next_frame()
        angle = 2.0 * math.pi * i / max(frames, 1)
        orbit = np.array([math.cos(angle), 0.5, math.sin(angle)]) * 2.0
        spin = SciRotation.from_euler("y", angle)

        dlog.record("orbit", orbit)
        dlog.record("spin", Transform.from_rotation_translation(spin, orbit))
        dlog.record("heading", spin)
        dlog.record("angle", angle)
        dlog.record("radius_line", Line((0.0, 0.0, 0.0), orbit))
        dlog.record("floor", quad)
        dlog.record("ring", Polygon([
            (math.cos(a), 0.0, math.sin(a)) for a in np.linspace(0.0, 2.0 * math.pi, 12, endpoint=False)
        ]))
        dlog.record("bone", Capsule((0.0, 0.0, 0.0), orbit, 0.1))
        dlog.record("target", Sphere(orbit, 0.25))

        joints = [Transform.identity()]
        for j in range(1, 3):
            joints.append(Transform.from_rotation_translation(spin, (0.0, float(j), 0.0)))
        dlog.record("arm", Armature(["root", "elbow", "hand"], [-1, 0, 1], joints))


def _cmd_demo(args: argparse.Namespace) -> int:
    if args.frames <= 0:
        print("error: --frames must be > 0", file=sys.stderr)
        return 2

    config = LoggerConfig.from_env()
    if args.live:
        host = args.host if args.host is not None else config.host
        port = args.port if args.port is not None else config.port
        session = RemoteSession.connect(host, port, config.timeout)
        target = LiveSessionTarget(session, config.container_path, config.node_name)
    else:
        out = args.out or config.output_path or "houlog_demo.geo"
        target = FileTarget(out)

    with DebugLogger(target, slot=LoggerSlot()) as dlog:
        record_demo_scene(dlog, args.frames)
        dlog.export()
        print(f"recorded {dlog.entry_count} entries in {dlog.frame_count} frames to {target.describe()}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="houlog", description="Debug geometry recorder tools")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")
    sub = parser.add_subparsers(dest="cmd", required=True)

    inspect_p = sub.add_parser("inspect", help="Validate and summarize a recording")
    inspect_p.add_argument("file", help="Recording geometry file (.geo or .geo.gz)")
    inspect_p.add_argument("--json", action="store_true", help="Print the validation result as JSON")

    serve_p = sub.add_parser("serve", help="Run a geometry bridge for live sessions")
    serve_p.add_argument("--host", default="127.0.0.1", help="Bind host (default 127.0.0.1)")
    serve_p.add_argument("--port", type=int, default=9090, help="Bind port (default 9090)")
    serve_p.add_argument("--container", action="append", default=[], help="Container node path to create (repeatable)")
    serve_p.add_argument("--snapshot-dir", dest="snapshot_dir", default=None, help="Write committed geometry here")

    demo_p = sub.add_parser("demo", help="Record a short animated scene")
    demo_p.add_argument("--out", default=None, help="Output geometry file")
    demo_p.add_argument("--live", action="store_true", help="Push to a live session instead of a file")
    demo_p.add_argument("--host", default=None, help="Live session host")
    demo_p.add_argument("--port", type=int, default=None, help="Live session port")
    demo_p.add_argument("--frames", type=int, default=48, help="Number of frames (>0)")

    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        return int(e.code or 0)

    if args.verbose:
        enable_console_logging(level="DEBUG")
    else:
        configure_from_env()

    handlers = {"inspect": _cmd_inspect, "serve": _cmd_serve, "demo": _cmd_demo}
    try:
        return handlers[args.cmd](args)
    except (HoulogError, OSError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
