"""
Read-only FastAPI surface for the page patrol.

This module provides:
- Stored fingerprint records
- Patrol service status
- Live change events over WebSocket
"""
