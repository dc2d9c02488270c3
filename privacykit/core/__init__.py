"""Shared types, errors and settings."""
