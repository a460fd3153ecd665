from __future__ import annotations

from classbook.context.registry import create_default_registry
from classbook.db import new_engine

registry = create_default_registry()

__version__ = '0.1.0'
__all__ = (
    'new_engine',
    'registry'
)
