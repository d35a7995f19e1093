"""
Operational Metrics for the Billing Exporter

Defines Prometheus metrics about the exporter itself: how long billing
sources take to query, where they fail, and how often upstream billing
data goes backwards.
"""

from prometheus_client import Counter, Histogram

SOURCE_QUERY_DURATION = Histogram(
    "cloud_billing_exporter_query_duration_seconds",
    "Duration of a full fetch-reduce-resolve-reconcile pass",
    ["provider"],
    buckets=(0.5, 1, 5, 10, 30, 60, 120, 300)
)

SOURCE_QUERY_ERRORS = Counter(
    "cloud_billing_exporter_query_errors_total",
    "Total number of failed billing source queries",
    ["provider", "stage"]
)

COST_REGRESSIONS = Counter(
    "cloud_billing_exporter_cost_regressions_total",
    "Total number of cumulative costs that decreased and were not applied",
    ["provider"]
)

DIRECTORY_REFRESHES = Counter(
    "cloud_billing_exporter_directory_refreshes_total",
    "Total number of account directory refreshes",
    ["provider", "status"]  # 'success', 'failure'
)
