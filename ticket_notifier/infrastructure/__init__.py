"""
Infrastructure
==============

Technical building blocks shared across modules (database engine and sessions).
"""
