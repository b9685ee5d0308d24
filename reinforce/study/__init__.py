"""Reinforcement sessions: assembly, lifecycle, exam clock and expiry sweep."""
