"""API helpers: orjson-backed response classes."""
