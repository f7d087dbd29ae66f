"""FastAPI dependencies: authorization context and service lookup."""
