# deviceadm/utils/__init__.py

"""
Utility module initialization file.

Exposes the injectable clock used to stamp request times.
"""

from .clock import Clock, UTCClock, FixedClock

__all__ = ["Clock", "UTCClock", "FixedClock"]
