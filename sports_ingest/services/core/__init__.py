"""
Provider protection shared by every source client.

Each provider gets one RateGovernor (request budget) and one circuit breaker,
injected into its client.
"""
