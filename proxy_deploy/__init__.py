"""Deploy contracts behind an upgradeable proxy and watch transactions to resolution."""
__version__ = "0.1.0"
