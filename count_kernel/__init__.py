"""
Count Kernel - physical inventory count lifecycle.

A small, auditable core for facility inventory counts:
- Single active count per facility (READY -> IN_PROGRESS -> COMPLETED)
- Side-effect-free business-rule validation with errors and warnings
- Append-only, checksummed, day-segmented audit trail
- Injectable document store (memory, JSON files, SQL)
"""

__version__ = "0.1.0"
