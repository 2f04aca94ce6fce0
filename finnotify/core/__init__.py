"""Scheduling of detector sweeps."""
