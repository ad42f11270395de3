"""
Browser Automation Module

Playwright-backed live feeds for the operator view.
"""

from .screencast import ScreencastTransport

__all__ = ["ScreencastTransport"]
