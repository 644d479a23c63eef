"""
rtcprobe - Quality statistics for real-time audio/video sessions

Samples the stats of a live session, keeps a normalized report history,
estimates audio MOS, flags significant changes and summarizes the session
in a ticket.
"""

__version__ = "1.0.0"
__author__ = "rtcprobe Team"

from rtcprobe.core.config import Config
from rtcprobe.core.probe import Probe
from rtcprobe.stats.collector import Collector

__all__ = [
    "Probe",
    "Config",
    "Collector",
    "__version__",
]
