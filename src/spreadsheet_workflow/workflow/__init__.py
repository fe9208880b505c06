"""Workflow steps, propagation rules and the orchestrator."""
