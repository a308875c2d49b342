"""
Utility modules for Jarvis
- retry: bounded exponential-backoff retry built on tenacity
"""

from .retry import retry_async

__all__ = ["retry_async"]
