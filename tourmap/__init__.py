"""TourMap: map a touring production's venues from a single web page."""

__version__ = "0.1.0"
