"""Session handling for the jobwatch client.

This package owns the authenticated session: its encrypted persistence and
its lifecycle (login, renewal, logout).
"""
