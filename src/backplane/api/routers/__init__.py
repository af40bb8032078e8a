"""API routers: agent protocol, jobs, health."""
