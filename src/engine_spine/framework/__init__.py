"""Framework services shared across engine-spine (logging)."""
