"""Swap sizing, lifecycle and the safe migration pipeline."""
