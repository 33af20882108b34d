"""HTTP routers: HTML feedback flow and JSON API."""
