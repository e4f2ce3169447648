"""
Infrastructure Layer
=====================

Low-level technical concerns shared across modules:
- Structured logging setup
- Correlation-aware loggers and latency timing
"""
