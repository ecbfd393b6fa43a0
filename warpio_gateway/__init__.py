"""Multi-tenant browser gateway for the Warpio interactive terminal."""

__version__ = "0.1.0"
