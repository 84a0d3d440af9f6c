"""Adaptive DNS resolver routing polluted hostnames through a trusted upstream."""
