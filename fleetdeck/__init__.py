"""FleetDeck — session and import manager for VPS-hosted trading bots."""

__version__ = "0.1.0"
