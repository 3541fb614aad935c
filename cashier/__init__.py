"""Recurring billing subscriptions backed by an external payment gateway."""

__version__ = "0.1.0"
