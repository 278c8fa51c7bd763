"""Prometheus exporter for Octopus Energy usage and GB grid carbon intensity."""

__version__ = "0.1.0"
