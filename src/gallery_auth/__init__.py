"""Gallery authentication: OAuth login, self-issued credentials, client sessions."""

__version__ = "0.1.0"
