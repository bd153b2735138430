"""Type aliases for dynamic data structures throughout the application.

All types defined here should be JSON-serializable to support logging,
API responses, and webhook bodies.
"""

from typing import Any

# Entity snapshot delivered to webhook subscribers
# Must be serializable by orjson
type EventPayload = dict[str, Any]
