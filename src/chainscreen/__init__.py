"""
chainscreen - Blockchain AML Screening Platform

A platform for crypto compliance teams that:
- Resolves addresses to entities across conflicting attribution sources
- Scores addresses and transactions for entity, jurisdiction and graph risk
- Monitors client addresses and opens compliance cases for new activity
- Drives cases through an auditable review workflow
"""

__version__ = "0.1.0"
