"""Test utilities for canopy applications.

Provides an in-process ASGI test client and a payload row decoder::

    from canopy.testing import TestClient, payload_rows
"""

from canopy.testing.client import TestClient, payload_rows

__all__ = [
    "TestClient",
    "payload_rows",
]
