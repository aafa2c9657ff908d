"""kubedig - interactive Kubernetes log viewer with live highlighting and full-buffer search."""

__version__ = "0.1.1"
