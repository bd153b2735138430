"""HTTP API layer built on FastAPI.

- **main**: application factory and lifespan
- **dependencies**: access to the services of the ``AppContext``
- **routes**: webhook subscriptions, event dispatch and key allocation
- **middleware**: request context, request logging, exception handlers
- **schemas**: request/response models
- **utils**: orjson response class
"""
