"""Ephemera — two-party ephemeral messaging state engine."""
