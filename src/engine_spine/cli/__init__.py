"""Command line interface for engine-spine (``engine-spine``)."""
