"""Transformers from provider payloads into canonical records.

Malformed records raise TransformError and are skipped by the batch helpers.
"""
