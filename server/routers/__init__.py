"""HTTP routers for the expedition game server."""
