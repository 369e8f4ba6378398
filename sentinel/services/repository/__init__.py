"""
Report repositories: Firestore for production, in-memory for local runs and tests.
"""

from sentinel.services.repository.base import (
    DeleteField,
    Increment,
    Patch,
    ReportRepository,
    SetValue,
    Subscription,
)

__all__ = ["DeleteField", "Increment", "Patch", "ReportRepository", "SetValue", "Subscription"]
