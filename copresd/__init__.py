"""copresd: co-presence and shared note hub over Reticulum."""

__version__ = "0.1.0"
