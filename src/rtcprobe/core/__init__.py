"""
Core rtcprobe components.

This module contains the configuration and the probe facade.
"""

from rtcprobe.core.config import Config, load_config
from rtcprobe.core.probe import Probe

__all__ = [
    "Config",
    "load_config",
    "Probe",
]
