"""Domain model and orchestration logic."""
