"""
Processing session.

A :class:`Session` owns every piece of per-subject state (filters,
calibration, hysteresis counters, RR buffer, blood-pressure window) and runs
the whole pipeline synchronously for each submitted frame::

    session = Session(on_event=print)
    session.initialize()
    session.start()
    snapshot = session.submit_frame(rgba_bytes, width, height, timestamp_ms)

Frames are never queued.  A frame submitted while another is still being
processed is dropped, since a stale biometric sample has no value.  A
:meth:`Session.reset` that arrives while a frame is in flight is applied as
soon as that frame finishes, and the frame's result is discarded.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from ppg_vitals.arrhythmia import ArrhythmiaDetector
from ppg_vitals.beats import BeatDetector, HeartRateEstimator
from ppg_vitals.blood_pressure import BloodPressureEstimator
from ppg_vitals.calibration import CalibrationHandler
from ppg_vitals.config import ProcessorConfig
from ppg_vitals.errors import SessionStateError, VitalsError
from ppg_vitals.events import EventCallback, EventCode, EventEmitter
from ppg_vitals.filters import KalmanFilter, SavitzkyGolayFilter
from ppg_vitals.frame_sampler import FrameSampler, PixelBuffer
from ppg_vitals.models import BP_NOT_READY, RawFrameSample, VitalSignsSnapshot
from ppg_vitals.signal_analyzer import SignalAnalyzer
from ppg_vitals.spo2 import SpO2Estimator

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[VitalSignsSnapshot], None]

DEBUG_EVERY_N_FRAMES = 30


class Session:
    """
    Single-subject vital-signs session.

    Parameters
    ----------
    config:
        Pipeline configuration.  Validated by :meth:`initialize`.
    on_snapshot:
        Optional consumer called with every snapshot.  Exceptions it raises
        are reported as ``CALLBACK_ERROR`` events.
    on_event:
        Optional consumer of :class:`~ppg_vitals.events.ProcessingEvent`.
    """

    def __init__(
        self,
        config: Optional[ProcessorConfig] = None,
        on_snapshot: Optional[SnapshotCallback] = None,
        on_event: Optional[EventCallback] = None,
    ) -> None:
        self.config = config or ProcessorConfig()
        self.on_snapshot = on_snapshot
        self.events = EventEmitter(on_event)

        self._frame_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._generation = 0
        self._in_flight = False
        self._reset_pending = False

        self._initialized = False
        self._running = False
        self._frame_count = 0
        self._expiry_reported = False

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def generation(self) -> int:
        return self._generation

    def initialize(self) -> None:
        """Validate the configuration and build fresh pipeline components."""
        self.config.validate()
        with self._state_lock:
            self._build_components()
            self._initialized = True
            self._generation += 1
        logger.info("Session initialised")

    def start(self) -> None:
        """Begin accepting frames; opens the calibration window if uncalibrated."""
        self._require_initialized()
        with self._state_lock:
            if not self.calibration.is_calibrated:
                self.calibration.reset()
                self._expiry_reported = False
            self._running = True
        logger.info("Session started")

    def stop(self) -> None:
        with self._state_lock:
            self._running = False
        logger.info("Session stopped")

    def calibrate(self) -> None:
        """Discard the current calibration and open a new calibration window."""
        self._require_initialized()
        with self._state_lock:
            self.calibration.reset()
            self._expiry_reported = False
        logger.info("Calibration restarted")

    def reset(self) -> None:
        """
        Return all per-session state to its initial empty form.

        If a frame is being processed the reset is deferred until it
        completes and that frame's snapshot is discarded.
        """
        with self._state_lock:
            self._generation += 1
            if not self._initialized:
                return
            if self._in_flight:
                self._reset_pending = True
                logger.debug("Reset deferred until the in-flight frame completes")
                return
            self._reset_components()
        logger.info("Session reset")

    # ------------------------------------------------------------------
    # Frame entry point
    # ------------------------------------------------------------------

    def submit_frame(
        self,
        pixel_buffer: PixelBuffer,
        width: int,
        height: int,
        timestamp_ms: float,
    ) -> Optional[VitalSignsSnapshot]:
        """
        Run the full pipeline on one frame.

        Returns the new snapshot, or *None* when the frame was dropped, its
        processing failed, or a reset arrived while it was in flight.

        Raises
        ------
        SessionStateError
            If the session has not been initialised and started.
        """
        self._require_initialized()
        if not self._running:
            raise SessionStateError("submit_frame() called on a stopped session")

        if not self._frame_lock.acquire(blocking=False):
            self.events.emit(EventCode.FRAME_DROPPED, "Frame dropped: pipeline busy",
                             timestamp_ms, logging.DEBUG)
            return None

        try:
            with self._state_lock:
                self._in_flight = True
                generation = self._generation

            snapshot: Optional[VitalSignsSnapshot] = None
            try:
                snapshot = self._process(pixel_buffer, width, height, timestamp_ms)
            except VitalsError as exc:
                self.events.emit(EventCode.PROCESSING_ERROR, str(exc), timestamp_ms,
                                 logging.ERROR, error=type(exc).__name__)
            except Exception as exc:
                logger.exception("Unexpected failure while processing frame")
                self.events.emit(EventCode.PROCESSING_ERROR, str(exc), timestamp_ms,
                                 logging.ERROR, error=type(exc).__name__)

            with self._state_lock:
                self._in_flight = False
                stale = generation != self._generation
                if self._reset_pending:
                    self._reset_components()
                    self._reset_pending = False
        finally:
            self._frame_lock.release()

        if stale:
            if snapshot is not None:
                self.events.emit(EventCode.RESULT_DISCARDED,
                                 "Snapshot discarded: session reset during processing",
                                 timestamp_ms, logging.DEBUG)
            return None

        if snapshot is not None and self.on_snapshot is not None:
            try:
                self.on_snapshot(snapshot)
            except Exception as exc:
                self.events.emit(EventCode.CALLBACK_ERROR, str(exc), timestamp_ms,
                                 logging.ERROR, error=type(exc).__name__)
        return snapshot

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise SessionStateError("Session.initialize() must be called first")

    def _build_components(self) -> None:
        cfg = self.config
        self.sampler = FrameSampler(cfg)
        self.calibration = CalibrationHandler(cfg)
        self.kalman = KalmanFilter(cfg.kalman_q, cfg.kalman_r)
        self.smoother = SavitzkyGolayFilter(cfg.sg_window, cfg.sg_polyorder)
        self.analyzer = SignalAnalyzer(cfg)
        self.beats = BeatDetector(cfg)
        self.heart_rate = HeartRateEstimator(cfg)
        self.arrhythmia = ArrhythmiaDetector(cfg)
        self.blood_pressure = BloodPressureEstimator(cfg)
        self.spo2 = SpO2Estimator(cfg)
        self.events.reset()
        self._frame_count = 0
        self._expiry_reported = False

    def _reset_components(self) -> None:
        for component in (
            self.sampler, self.calibration, self.kalman, self.smoother, self.analyzer,
            self.beats, self.heart_rate, self.arrhythmia, self.blood_pressure, self.spo2,
        ):
            component.reset()
        self.events.reset()
        self._frame_count = 0
        self._expiry_reported = False

    def _process(
        self, pixel_buffer: PixelBuffer, width: int, height: int, ts: float
    ) -> VitalSignsSnapshot:
        self._frame_count += 1
        sample = self.sampler.sample(pixel_buffer, width, height, self.calibration.state)
        self._report_exposure(sample, ts)
        self._update_calibration(sample, ts)

        filtered: Optional[float] = None
        if sample.is_valid:
            filtered = self.smoother.filter(self.kalman.update(sample.red_value))

        was_detected = self.analyzer.is_finger_detected
        detection = self.analyzer.process(sample, filtered, self.calibration.state, ts)
        detected = detection.finger_detected

        if detected and not was_detected:
            self.events.emit(EventCode.FINGER_DETECTED, "Finger detected", ts,
                             quality=detection.quality)
        elif was_detected and not detected:
            self.events.emit(EventCode.FINGER_LOST, "Finger lost", ts)
            self.beats.reset()
            self.blood_pressure.reset()
            self.spo2.reset()

        self.events.condition(
            EventCode.WEAK_SIGNAL,
            detected and detection.quality < self.config.weak_signal_quality,
            "Weak signal: press the finger gently and keep still", ts,
            quality=detection.quality,
        )

        if detected and filtered is not None:
            self._track_beats(sample, filtered, detection.quality, ts)

        if self._frame_count % DEBUG_EVERY_N_FRAMES == 0:
            s = detection.scores
            logger.debug(
                "frame=%d red=%.1f composite=%.2f thr=%.2f scores=(%.2f %.2f %.2f %.2f %.2f) trend=%s",
                self._frame_count, sample.red_value, detection.composite, detection.threshold,
                s.red_channel, s.stability, s.pulsatility, s.biophysical, s.periodicity,
                detection.trend.value,
            )

        return VitalSignsSnapshot(
            timestamp_ms=ts,
            heart_rate=int(round(self.heart_rate.bpm)) if detected else 0,
            spo2=int(round(self.spo2.compute())) if detected else 0,
            blood_pressure=self.blood_pressure.estimate() if detected else BP_NOT_READY,
            arrhythmia_status=self.arrhythmia.status,
            signal_quality=detection.quality,
            finger_detected=detected,
            roi=sample.roi,
            perfusion_index=self.analyzer.validator.perfusion_index() if detected else 0.0,
            calibration_progress=self.calibration.progress,
            arrhythmia=self.arrhythmia.last_analysis,
        )

    def _report_exposure(self, sample: RawFrameSample, ts: float) -> None:
        self.events.condition(EventCode.LOW_LIGHT, sample.low_light,
                              "Low light: turn on the torch", ts)
        self.events.condition(EventCode.OVEREXPOSED, sample.overexposed,
                              "Overexposed: reduce pressure or torch brightness", ts)

    def _update_calibration(self, sample: RawFrameSample, ts: float) -> None:
        if self.calibration.add_sample(sample.red_value, ts):
            state = self.calibration.state
            self.events.emit(EventCode.CALIBRATION_COMPLETE, "Calibration complete", ts,
                             min_threshold=state.min_threshold,
                             max_threshold=state.max_threshold)
        elif self.calibration.expired and not self._expiry_reported:
            self._expiry_reported = True
            self.events.emit(EventCode.CALIBRATION_EXPIRED,
                             "Calibration window expired; using default thresholds",
                             ts, logging.WARNING)

    def _track_beats(self, sample: RawFrameSample, filtered: float, quality: int, ts: float) -> None:
        self.blood_pressure.add_sample(filtered, ts)
        self.spo2.push(sample.red_value / sample.gain, sample.green_value)

        rr = self.beats.add(filtered, ts)
        if rr is None:
            return
        self.heart_rate.add_rr(rr)

        before = self.arrhythmia.status
        self.arrhythmia.add_rr(rr, quality / 100.0)
        after = self.arrhythmia.status
        if after.has_arrhythmia and not before.has_arrhythmia:
            self.events.emit(EventCode.ARRHYTHMIA_CONFIRMED, "Arrhythmia confirmed", ts,
                             logging.WARNING, episodes=after.confirmed_count)
        elif before.has_arrhythmia and not after.has_arrhythmia:
            self.events.emit(EventCode.ARRHYTHMIA_CLEARED, "Arrhythmia cleared", ts)
