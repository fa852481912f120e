"""Transactional key-value workload generator."""

__version__ = "0.3.0"
