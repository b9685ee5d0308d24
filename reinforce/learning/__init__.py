"""Grade tracking for student difficulties."""
