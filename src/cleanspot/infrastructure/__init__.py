"""Infrastructure layer: persistence, integrations, security, observability."""
