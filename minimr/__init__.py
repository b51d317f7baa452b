"""A small MapReduce coordinator and worker communicating over a Unix socket."""

__version__ = "0.1.0"

__all__ = ["coordinator", "options", "worker"]