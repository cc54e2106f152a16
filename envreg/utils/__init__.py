"""Utility modules: input handling and dimension selection."""
