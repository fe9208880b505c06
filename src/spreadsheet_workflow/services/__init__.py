"""Collaborator services, clients and the workflow registry."""
