"""revbridge: reconcile a git repository with a centralized, path-versioned
revision store."""

__version__ = "0.1.0"
