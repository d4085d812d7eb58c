"""Trading plan rules."""
