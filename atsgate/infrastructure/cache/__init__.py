"""Caching Service Implementation.

Provides the in-memory TTL cache behind the CacheService interface and the
content-addressed key derivation used for analysis results.
Bounded Context: Cache Management
"""
