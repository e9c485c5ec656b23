"""API routers, one module per dashboard area."""
