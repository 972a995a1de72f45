"""Health Rocket client SDK and diagnostic tooling."""

__version__ = "0.1.0"
