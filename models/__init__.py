"""Request/response and validation models."""
