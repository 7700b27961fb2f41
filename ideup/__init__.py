"""ideup - keep locally installed IDE plugins compatible with the IDE build."""

__version__ = "0.1.0"
