"""HTTP surface for clusterwatch."""

from .api import ClusterwatchAPIServer, create_app

__all__ = ["ClusterwatchAPIServer", "create_app"]
