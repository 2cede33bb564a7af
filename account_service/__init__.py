"""User-account backend: registration, login, JWT tokens and admin user management."""

__version__ = "0.1.0"
