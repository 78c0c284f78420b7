"""
Citizen service-request lifecycle engine.

Tracks applications from submission to resolution, enforces auto-approval
deadlines, and re-escalates cases that citizens report as unresolved.
"""

__version__ = "0.3.0"
