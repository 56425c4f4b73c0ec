"""
Remedy - Self-Healing UI Test Repair

Diagnoses why recorded browser test steps failed, picks a fix for each one
and compiles a repaired, re-runnable route.
"""

__version__ = "0.1.0"

from remedy.core.engine import RepairEngine, RepairReport

__all__ = [
    "RepairEngine",
    "RepairReport",
    "__version__",
]
