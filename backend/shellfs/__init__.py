"""shellfs — persistent virtual file system for the desktop shell."""

__version__ = "0.1.0"
