"""Batching components for the embedding service.

This package contains helpers used to run embedding inference efficiently by
controlling how inputs are grouped and scheduled onto available compute
resources (CPU, CUDA GPUs, or Apple MPS).

Key pieces
- ``executor``: Splits requests into backend-sized chunks and enforces the
  per-model concurrency limit.
- ``gpu_detector``: Detects available accelerators and picks a device.
"""
