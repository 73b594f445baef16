"""
API routes package.
"""

from app.api import (
    devis,
    exade,
)

__all__ = [
    "devis",
    "exade",
]
