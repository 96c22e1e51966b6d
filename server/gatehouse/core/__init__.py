"""Configuration, persistence, security and observability plumbing."""
