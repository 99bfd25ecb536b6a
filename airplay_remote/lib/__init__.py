"""Shared building blocks for the AirPlay client (see airplay_remote/__init__.py)."""
