"""Set up a Mac to print on an HPRT printer through a remote Clodop service."""

__version__ = "1.0.0"