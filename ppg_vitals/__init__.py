"""
PPG Vitals — fingertip camera photoplethysmography core.

Place a fingertip over the camera lens with the torch on; every RGBA frame
is reduced to one red-channel sample, filtered, scored for finger presence
and turned into heart rate, SpO2, blood pressure and arrhythmia estimates.
"""

from ppg_vitals.config import ProcessorConfig
from ppg_vitals.events import EventCode, ProcessingEvent
from ppg_vitals.models import VitalSignsSnapshot
from ppg_vitals.session import Session

__version__ = "0.1.0"
__author__ = "ppg_vitals"

__all__ = [
    "EventCode",
    "ProcessingEvent",
    "ProcessorConfig",
    "Session",
    "VitalSignsSnapshot",
]
