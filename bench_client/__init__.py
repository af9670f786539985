"""
Benchmark client for the local benchmark server.

The client asks the server which benchmark to run next, runs it with its
console output and uncaught errors redirected, and reports the resulting
profile. Without a server it falls back to a manual picker and renders the
results, charts included, on its own results page.
"""

from .main import main

__all__ = ["main"]
