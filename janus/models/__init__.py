"""Model catalog, routing, providers and tier learning."""
