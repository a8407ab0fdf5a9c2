"""Package version, reported by health/check, capabilities and --version."""

__version__ = "1.4.0"
