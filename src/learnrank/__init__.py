"""Gamification engine for a learning platform."""
