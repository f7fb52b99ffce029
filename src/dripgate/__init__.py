"""DRIPGATE: policy gate in front of a partner token faucet."""

__version__ = "0.1.0"
