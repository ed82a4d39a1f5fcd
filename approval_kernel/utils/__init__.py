"""Utility helpers for the approval kernel."""
