from prometheus_client import Counter, Histogram

# Low-cardinality labels only: operation names, never object keys
REQUESTS = Counter(
    "cos_requests_total",
    "Total object storage requests",
    ["operation", "outcome"],
)

LATENCY = Histogram(
    "cos_request_duration_seconds",
    "Object storage request latency in seconds",
    ["operation"],
)

READ_RETRIES = Counter(
    "cos_read_retries_total",
    "Range reads reopened after a transport failure",
)

MULTIPART_ABORTS = Counter(
    "cos_multipart_aborts_total",
    "Multipart uploads aborted after a failed or unconfirmed write",
)
