"""
Source extractors feeding the raw (ODS) layer.
"""

from .memory import InMemorySourceExtractor

__all__ = [
    "InMemorySourceExtractor",
]
