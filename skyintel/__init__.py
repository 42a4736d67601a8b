"""SkyIntel predictive core: trajectory prediction and proximity analysis for ADS-B traffic."""

__version__ = "1.0.0"
