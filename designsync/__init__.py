"""DesignSync: reconcile an edited architecture graph with a real codebase."""

__version__ = "0.3.0"
