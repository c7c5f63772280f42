"""
Patrol package: the page-change monitoring core.

This package contains:
- Target and fingerprint models
- Change detection (fingerprinting and verdicts)
- Per-target patrol scheduling
- The patrol engine that runs one observation cycle
- Notification adapters
- The patrol service driving it all
"""

__version__ = "1.0.0"
