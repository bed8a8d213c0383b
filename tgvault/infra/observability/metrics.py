from prometheus_client import Counter, Histogram, make_asgi_app

# 低基数标签：使用路由模板（如 /api/v1/image/{public_id}），避免每个 ID 生成一条时间序列
REQUESTS = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "route", "status"],
)

LATENCY = Histogram(
    "http_request_duration_seconds",
    "Request latency in seconds",
    ["method", "route"],
)

# One sample per single-attempt chunk call; retries show up as extra "transient" samples
TRANSPORT_CALLS = Counter(
    "transport_chunk_calls_total",
    "Remote transport chunk calls by outcome",
    ["operation", "outcome"],
)

RATE_LIMIT_REJECTIONS = Counter(
    "rate_limit_rejections_total",
    "Requests rejected by the per-client token bucket",
)

RATE_LIMIT_BUCKETS = Counter(
    "rate_limit_buckets_evicted_total",
    "Idle rate limit buckets removed by the sweeper",
)

# /metrics 端点 ASGI 应用
metrics_app = make_asgi_app()
