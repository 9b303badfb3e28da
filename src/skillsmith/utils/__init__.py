"""Shared helpers for text and file handling."""
