"""Communication Gateway: human-approved outbound messaging for automated agents."""

__version__ = "1.0.0"
