# dynajournal/infra/metrics/circuit_breaker.py
"""Circuit Breaker metrics."""

from prometheus_client import Gauge, Counter, Histogram

circuit_breaker_state = Gauge(
    'dynajournal_circuit_breaker_state',
    'Current state (0=closed, 1=open, 2=half_open)',
    ['name']
)

circuit_breaker_failures = Counter(
    'dynajournal_circuit_breaker_failures_total',
    'Total circuit breaker failures',
    ['name']
)

circuit_breaker_trips = Counter(
    'dynajournal_circuit_breaker_trips_total',
    'Number of times circuit breaker opened',
    ['name']
)

circuit_breaker_call_duration = Histogram(
    'dynajournal_circuit_breaker_call_duration_seconds',
    'Duration of calls through circuit breaker',
    ['name', 'result'],
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0]
)
