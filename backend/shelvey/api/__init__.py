"""
ShelVey Orchestrator - API Package
===================================

FastAPI application and action endpoints.
"""
