"""
Ticket Notifier
===============

SLA tracking and alerting for support tickets.
"""

__version__ = "1.0.0"
