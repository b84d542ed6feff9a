"""Integration tests against a running semembed instance.

Point ``SEMEMBED_TEST_URL`` at the service (default ``http://localhost:8081``).
Tests skip when nothing is listening there.
"""
