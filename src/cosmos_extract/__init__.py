"""Monthly delegation, reward and fee reporting for Cosmos accounts."""

__version__ = "0.1.0"
