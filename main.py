#!/usr/bin/env python3
"""
PPG Vitals – command-line entry point.

Usage
-----
    python main.py [OPTIONS]

Options
-------
    --synthetic          Feed a synthetic 75 BPM fingertip signal instead of a camera
    --camera-index INT   OpenCV camera index (default: 0)
    --fps FLOAT          Nominal frame rate (default: 30)
    --duration FLOAT     Stop after this many seconds (default: run until Ctrl-C)
    --preset NAME        balanced | sensitive | specific
    --bpm FLOAT          Heart rate of the synthetic signal (default: 75)
    --verbose            Log per-frame diagnostics (DEBUG)

One summary line is logged per second of frames.
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
import time
from typing import Iterator, Optional, Tuple

import cv2

from ppg_vitals.config import ProcessorConfig
from ppg_vitals.events import ProcessingEvent
from ppg_vitals.models import VitalSignsSnapshot
from ppg_vitals.session import Session
from ppg_vitals.synthetic import synthetic_stream

logger = logging.getLogger("ppg_vitals")

Frame = Tuple[bytes, int, int, float]


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Fingertip camera vital signs (PPG)",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--synthetic", action="store_true",
                        help="Use a synthetic signal instead of a camera")
    parser.add_argument("--camera-index", type=int, default=0,
                        help="OpenCV VideoCapture index")
    parser.add_argument("--fps", type=float, default=30.0,
                        help="Nominal frame rate")
    parser.add_argument("--duration", type=float, default=None,
                        help="Stop after this many seconds")
    parser.add_argument("--preset", default="balanced",
                        choices=["balanced", "sensitive", "specific"],
                        help="Detection preset")
    parser.add_argument("--bpm", type=float, default=75.0,
                        help="Heart rate of the synthetic signal")
    parser.add_argument("--verbose", action="store_true",
                        help="Log per-frame diagnostics")
    return parser.parse_args(argv)


# ---------------------------------------------------------------------------
# Frame sources
# ---------------------------------------------------------------------------

def camera_frames(index: int, duration: Optional[float]) -> Iterator[Frame]:
    """Yield RGBA frames from an OpenCV camera, timestamped in ms."""
    cap = cv2.VideoCapture(index)
    if not cap.isOpened():
        raise RuntimeError(f"Cannot open camera index {index}")
    start = time.monotonic()
    try:
        while duration is None or time.monotonic() - start < duration:
            ok, bgr = cap.read()
            if not ok:
                logger.warning("Camera read failed; stopping")
                break
            rgba = cv2.cvtColor(bgr, cv2.COLOR_BGR2RGBA)
            h, w = rgba.shape[:2]
            yield rgba.tobytes(), w, h, (time.monotonic() - start) * 1000.0
    finally:
        cap.release()


def log_snapshot(snap: VitalSignsSnapshot) -> None:
    bp = snap.blood_pressure
    if snap.finger_detected:
        logger.info(
            "HR=%d  SpO2=%d%%  BP=%d/%d (%s)  quality=%d  PI=%.1f%%  rhythm=%s x%d",
            snap.heart_rate, snap.spo2, bp.systolic, bp.diastolic, bp.status.value,
            snap.signal_quality, snap.perfusion_index,
            snap.arrhythmia_status.state.value, snap.arrhythmia_status.confirmed_count,
        )
    else:
        logger.info("Waiting for finger…  calibration=%.0f%%", snap.calibration_progress * 100)


def log_event(event: ProcessingEvent) -> None:
    if event.details:
        logger.debug("event %s %s", event.code.value, dict(event.details))


# ---------------------------------------------------------------------------
# Main loop
# ---------------------------------------------------------------------------

def run(args: argparse.Namespace) -> int:
    config = dataclasses.replace(ProcessorConfig.preset(args.preset), fps=args.fps)
    session = Session(config, on_event=log_event)
    session.initialize()
    session.start()

    if args.synthetic:
        frames: Iterator[Frame] = synthetic_stream(args.duration or 30.0, fps=args.fps, bpm=args.bpm)
    else:
        frames = camera_frames(args.camera_index, args.duration)

    log_every = max(1, int(round(args.fps)))
    frame_idx = 0
    try:
        for buf, w, h, ts in frames:
            snap = session.submit_frame(buf, w, h, ts)
            if snap is not None and frame_idx % log_every == 0:
                log_snapshot(snap)
            frame_idx += 1
    except KeyboardInterrupt:
        logger.info("Interrupted.")
    except RuntimeError as exc:
        logger.error("%s", exc)
        return 1
    finally:
        session.stop()

    return 0


def main(argv: Optional[list] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s – %(message)s",
        datefmt="%H:%M:%S",
    )
    return run(args)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    sys.exit(main())
