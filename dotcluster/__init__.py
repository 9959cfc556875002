"""dotcluster: manage dotfile clusters stored as bare-alias repositories."""

__version__ = "0.1.0"
