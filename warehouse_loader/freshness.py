"""Decide whether source data is newer than what the table already holds."""

from datetime import datetime

from warehouse_loader.models import FreshnessState


def should_proceed(data_date: datetime, state: FreshnessState, force: bool = False) -> bool:
    """
    Return True when a file with logical date ``data_date`` should be loaded.

    A table with no prior data (absent, or no freshness value) always loads.
    Otherwise the source must be strictly after the latest loaded date; an
    equal date is skipped so re-running with the same file is a no-op.
    ``force`` overrides the comparison.
    """
    if force or not state.has_prior_data:
        return True
    return data_date > state.latest
