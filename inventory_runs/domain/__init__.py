"""Pure run-level types."""
