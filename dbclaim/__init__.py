"""Database claim controller: provisions tenant databases, roles and rotating credentials."""

__version__ = "0.1.0"
