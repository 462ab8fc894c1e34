"""HTTP clients for the sports data providers.

Clients return raw provider records; mapping into canonical records is the
transformers' job.
"""
