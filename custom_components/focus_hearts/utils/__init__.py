# File: utils/__init__.py
"""Pure Python utilities for FocusHearts.

This module contains pure Python functions with ZERO Home Assistant dependencies.
All functions here can be unit tested without Home Assistant mocking.

Submodules:
    - dt_utils: Date/time conversion, local-midnight boundaries, Clock

Usage:
    from . import dt_utils
    from .dt_utils import Clock
"""

from . import dt_utils

__all__ = ["dt_utils"]
