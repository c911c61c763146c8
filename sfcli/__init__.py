"""Tools for PHP projects: log humanising, git wrappers, a FastCGI client, Link headers and .env files."""

__version__ = "0.1.0"