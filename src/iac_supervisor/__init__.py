# src/iac_supervisor/__init__.py
"""IaC Supervisor: signal relay and durable log capture for IaC tools in CI."""

__version__ = "0.3.0"
