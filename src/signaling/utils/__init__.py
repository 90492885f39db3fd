"""Shared helpers for the signaling relay."""
