"""Per-team run statistics stored as CSV under a stats directory."""
