"""Kubernetes access for lbwarden."""
