"""
Low-level socket pieces used by HTTPServer.
"""

from .connection import Connection

__all__ = ["Connection"]
