"""gslb-controller - DNS based global server load balancing across clusters."""

__version__ = "0.1.0"
