"""dhis2_aggregate - DHIS2 aggregate export for community health targets.

Turns per-facility, per-month target documents into a DHIS2 dataValueSet:
definitions are resolved from app settings, facilities are attributed to
organisation units through their contact hierarchy, and counters are summed
per (orgUnit, dataElement).
"""

__all__ = ["__version__"]

__version__ = "0.3.0"
