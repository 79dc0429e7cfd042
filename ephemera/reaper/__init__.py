"""Expiry reaper and the background job scheduler."""

from ephemera.reaper.jobs import BackgroundJobs
from ephemera.reaper.reaper import ExpiryReaper, SweepReport

__all__ = ["BackgroundJobs", "ExpiryReaper", "SweepReport"]
