"""Control plane: agent sessions, service commands, lifecycle and jobs."""
