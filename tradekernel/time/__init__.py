"""Injectable clocks."""

from .clock import Clock, RealTimeClock, SimulatedClock

__all__ = [
    "Clock",
    "RealTimeClock",
    "SimulatedClock",
]
