"""refstore — a git-backed registry of reusable reference material."""

__version__ = "0.1.0"
