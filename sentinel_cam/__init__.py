"""Sentinel camera package.

This package contains modules for camera access, a motion gate, a scan
scheduler that decides when to ask a remote vision model whether a person is
present, alerting, and a Flask web UI.
"""

# Nothing to export at package import time; modules provide the functionality.
__all__ = []
