"""Pangolin operator: reconciles tunnel topology objects against a Pangolin control plane."""

__version__ = "0.1.0"
