"""Protocols for the collaborators of the orchestration core."""
