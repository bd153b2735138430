"""Infrastructure layer: persistence for the domain services.

- **Database access**: a single managed async connection (PostgreSQL or SQLite)
- **Repository pattern**: generic CRUD over ORM sessions
"""
