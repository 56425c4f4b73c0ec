"""Reporters - Repair pass records."""

from remedy.reporters.flight_recorder import FlightRecorder

__all__ = ["FlightRecorder"]
