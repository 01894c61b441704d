"""Load and correctness harness for the gobank money-transfer service.

Ramped simulated users each run the transfer workflow (provision,
authenticate, transfer, verify, clean up) and every step's outcome is
aggregated into a run summary.
"""

from __future__ import annotations

__all__ = []
