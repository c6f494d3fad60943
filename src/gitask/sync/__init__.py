"""Sync with a remote: conflict resolver and orchestrator."""
