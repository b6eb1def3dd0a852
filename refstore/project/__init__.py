"""Project — a project's manifest and its resolution into sync jobs."""
