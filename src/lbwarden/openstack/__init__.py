"""OpenStack access for lbwarden."""
