"""Reinforcement session engine: adaptive timed quizzes and consultation class status."""

__version__ = "1.0.0"
