"""PricePilot: multi-source vehicle market value engine."""

__version__ = "0.1.0"
