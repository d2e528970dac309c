"""
Checkbook Core

Inventory of pre-printed checkbook ranges, collision-free allocation of check
references under concurrent requests, capacity accounting and the check
status lifecycle, with a hash-chained audit trail and a FastAPI surface.
"""

__version__ = "1.0.0"
