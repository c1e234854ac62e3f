"""API Resilience Implementations.

Contains services for per-identity rate limiting, retries with exponential
backoff, and the cancellable periodic task used for background sweeps.
Bounded Context: API Resilience
"""
