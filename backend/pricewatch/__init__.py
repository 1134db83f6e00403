"""PriceWatch -- scheduled price scraping and drop notifications."""

__version__ = "0.1.0"
