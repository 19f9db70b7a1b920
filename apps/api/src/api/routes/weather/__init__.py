from __future__ import annotations

from .dependencies import router

# Import route modules to register endpoints with the shared router.
from . import locations as _locations  # noqa: F401
from . import search as _search  # noqa: F401

__all__ = ["router"]
