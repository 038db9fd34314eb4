"""Front door call routing service."""
