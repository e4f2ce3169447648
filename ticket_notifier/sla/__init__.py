"""
SLA Tracking Module
===================

Bounded Context for Service Level Agreement tracking and alerting.

Responsibilities:
- Compute SLA deadlines from the assignment time and the SLA duration policy
- Detect missed SLAs and overrun deadlines, alerting once per violation
- Gate periodic evaluation on business hours
- Persist tracking and assignment records (JSON file or database)
- Serve tracked tickets and compliance statistics over the API
- Hot-reload duration overrides via watchdog
"""

__version__ = "1.0.0"
