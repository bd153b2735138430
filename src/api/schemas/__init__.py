"""Pydantic models for API request validation and response serialization.

- **errors**: the ``ErrorResponse`` body returned by every failing request
- **webhooks**: subscription create/update requests and the public view
"""
