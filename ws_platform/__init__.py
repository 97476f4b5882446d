# WatchSync platform: identity resolution, conflict resolution and distribution planning.
__version__ = "0.1.0"
