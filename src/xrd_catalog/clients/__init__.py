"""Kubernetes clients, one per monitored cluster."""
