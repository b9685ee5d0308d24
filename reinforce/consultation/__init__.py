"""Consultation classes: derived status and business actions."""
