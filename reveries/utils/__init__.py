"""Shared helpers: retry policy, circuit breaker, URL normalization."""
