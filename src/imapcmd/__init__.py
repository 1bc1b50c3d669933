"""imapcmd - run home automation commands sent by email."""

__version__ = "0.1.0"
