"""Service modules for the reinsurance reporting platform."""

__all__ = ["reporting"]
