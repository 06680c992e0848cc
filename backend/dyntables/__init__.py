"""Runtime-declared tenant tables with a schema-driven query compiler."""

__version__ = "0.1.0"
