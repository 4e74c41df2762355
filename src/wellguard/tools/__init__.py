"""Tool integrations: external binary registry and HTTP client."""
