"""
Fundspace Backend Application Package

This package contains the FastAPI backend for grant discovery and
engagement tracking, including:

- main.py: FastAPI application and router wiring
- services/list_engine.py: filter / sort / paginate engine for list views
- services/record_assembly.py: denormalized grant view models
- services/engagement_ledger.py: saved / applied / received tracking rules
- services/tracking_orchestrator.py: optimistic tracking actions
"""

__version__ = "1.0.0"
