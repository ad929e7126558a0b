"""node-updater: zero-outage node image upgrades for AKS agent pools."""

__version__ = "0.1.0"
