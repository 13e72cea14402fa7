"""Core utilities shared by every estate module."""
