"""TaskTracker core: entity keys, webhooks and transactional persistence.

Architecture Overview:
- **API Layer**: FastAPI routes, middleware and error responses
- **Core Layer**: configuration, errors, logging, tracing, request context
- **Domain Layer**: key allocation and webhook registry/dispatch
- **Infrastructure Layer**: the single managed database connection

``src.bootstrap.AppContext`` wires the layers together at startup.
"""
