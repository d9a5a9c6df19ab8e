"""Prometheus metrics for the application"""
from prometheus_client import Counter, REGISTRY


def _counter(name: str, documentation: str, labelnames=()):
    # Re-importing the module (e.g. under reload) must not register twice
    try:
        return Counter(name, documentation, labelnames)
    except ValueError:
        return REGISTRY._names_to_collectors.get(name)


# Share metrics
successful_shares_counter = _counter(
    'sharekit_successful_shares_total',
    'Total number of successful posts with media'
)

failed_shares_counter = _counter(
    'sharekit_failed_shares_total',
    'Total number of failed share attempts',
    ['error_type']
)

upload_retries_counter = _counter(
    'sharekit_upload_retries_total',
    'Total number of retried upstream calls during sharing'
)

# Rate limiting
rate_limit_rejections_counter = _counter(
    'sharekit_rate_limit_rejections_total',
    'Total number of operations rejected by the local rate limiter',
    ['operation']
)

# Auth metrics
token_refreshes_counter = _counter(
    'sharekit_token_refreshes_total',
    'Total number of access token refresh attempts',
    ['status']
)

auth_attempts_counter = _counter(
    'sharekit_auth_attempts_total',
    'Total number of completed OAuth authorization attempts',
    ['status']
)
