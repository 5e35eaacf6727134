"""GitHub Actions metrics dashboard backend.

Fetches workflow runs from the GitHub REST API, aggregates them into
success/failure rates, duration percentiles, DORA metrics and billable
minutes, and serves the results through a two-tier stale-while-revalidate
cache.
"""

__version__ = "0.1.0"
