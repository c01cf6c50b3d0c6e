# jobwatch/appd/__init__.py
"""Backend sinks: Machine Agent metrics and the Analytics Events API."""
from .controller import BTHandle, ControllerClient
from .rest_client import RestClient

__all__ = ["BTHandle", "ControllerClient", "RestClient"]
