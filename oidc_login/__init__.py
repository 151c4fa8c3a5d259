"""Multi-provider OpenID Connect login for application sessions."""

__version__ = "0.1.0"
