"""Sovelogg: event-sourced sleep and diaper log with offline sync."""

__version__ = "0.1.0"
