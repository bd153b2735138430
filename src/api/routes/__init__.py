"""HTTP routers mounted by ``create_app``."""
