"""API Resilience Implementations.

Contains the error normalizer, retries with exponential backoff, and the
cancellation token shared by retry and polling loops.
Bounded Context: API Resilience
"""
