"""mgsim: constraint-based simulation of microbial community models."""

__version__ = "0.1.0"
