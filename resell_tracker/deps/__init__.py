"""Request-scoped FastAPI dependencies: identity and subscription gating."""
