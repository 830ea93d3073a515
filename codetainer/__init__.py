"""
Codetainer
==========

Sandboxed, container-backed terminals served over HTTP and WebSockets.
"""

__version__ = "0.1.0"
