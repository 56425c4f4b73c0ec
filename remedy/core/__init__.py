"""Core module - Engine, models and driver management."""

from remedy.core.engine import RepairEngine
from remedy.core.driver_factory import create_driver

__all__ = ["RepairEngine", "create_driver"]
