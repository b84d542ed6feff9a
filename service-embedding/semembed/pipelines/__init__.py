"""Request and response pipelines.

The modules in this package are the pure steps around inference:
- ``normalizer``: validates the raw request body and normalizes ``input``
- ``formatter``: token usage accounting and the OpenAI-compatible response
"""
