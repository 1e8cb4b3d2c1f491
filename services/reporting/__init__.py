"""Reinsurance reporting back-office service."""
