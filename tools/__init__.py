"""Command-line and output helpers for the Buddhabrot sampler."""
