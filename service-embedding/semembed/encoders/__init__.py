"""Embedding encoders and managers.

Exports the ``EmbeddingManager`` which serves requests, the
``ModelRegistry`` that owns loaded backends, and the backend contract.
Keep heavy ML imports within implementation modules to minimize import
overhead for unrelated paths.
"""
