"""Stage-aware risk evaluation for newly launched bonding-curve tokens."""

__version__ = "0.1.0"
