"""Core Application Layer: Orchestrates use cases and application logic.

Composes the rate limiter, cache and resilient client into the analysis
workflow.
"""
