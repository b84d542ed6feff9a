"""Tests for semembed.

Most tests run against an in-process fake backend (``tests.fakes``) so no
model weights are downloaded. Tests marked ``integration`` load a real
sentence-transformers model and are skipped unless explicitly enabled.
"""
