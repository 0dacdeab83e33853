"""
Resilience infrastructure - circuit breaking and opt-in retries for store calls.
"""

from .retry_service import (
    RetryService,
    CircuitBreaker,
    CircuitBreakerState,
    RETRIABLE_ERRORS,
    NON_RETRIABLE_ERRORS,
    get_retry_service,
    get_store_circuit_breaker,
    exponential_backoff_delay
)

__all__ = [
    'RetryService',
    'CircuitBreaker',
    'CircuitBreakerState',
    'RETRIABLE_ERRORS',
    'NON_RETRIABLE_ERRORS',
    'get_retry_service',
    'get_store_circuit_breaker',
    'exponential_backoff_delay'
]
