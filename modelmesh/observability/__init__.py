"""
Observability module for modelmesh.

Structured logging: JSON in production, colored text in development.
"""
