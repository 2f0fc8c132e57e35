"""Async client and CLI for Reolink cameras and NVRs.

The package wraps the device's JSON-over-HTTP command endpoint
(``/cgi-bin/api.cgi``) with a token-managed session and typed helpers for
PTZ guard positions, patrol routes, presets, detection zones and events.
"""

__version__ = "0.1.0"
