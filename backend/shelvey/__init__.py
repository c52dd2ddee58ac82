"""
ShelVey Orchestrator
====================

Phase orchestration and escalation engine for the six-phase
business-building pipeline.
"""

__version__ = "0.1.0"
