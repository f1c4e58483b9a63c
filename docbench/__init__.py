"""Load generator for document workloads on serializable SQL stores."""

__version__ = "0.1.0"
