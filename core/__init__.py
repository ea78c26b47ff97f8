"""
Core Module Package.

Infrastructure shared by the broker engine.

Components:
- clock: Unified time abstraction
"""

from .clock import ClockProtocol, SystemClock, MockClock
