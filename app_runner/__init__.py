"""
app-runner
==========

Device session toolkit for automated testing on game consoles, desktops
and mobile devices.

Connects to a device through a platform provider, holds a cross-process
lock on it for the lifetime of the session, and runs applications and
collects diagnostics (logs, screenshots, status) through one API.

Modules:
    - session: SessionManager and the active Session record
    - locking: Named cross-process resource locks
    - providers: Device backends (Xbox, PlayStation5, Switch, desktop, ADB, Sauce Labs, Mock)
    - config: Settings loaded from environment and .env
    - errors: Exception taxonomy
    - cli: Command-line entry point
    - utils: Logging, credential masking and file helpers
"""

__version__ = "1.0.0"
__author__ = "app-runner contributors"
