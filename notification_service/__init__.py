"""Notification dispatch and delivery service.

Takes business events, decides who should hear about them on which channel
(email, push, in-app) and delivers them with retries and status tracking.
"""

from __future__ import annotations

__version__ = "1.0.0"
