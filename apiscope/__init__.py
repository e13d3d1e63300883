"""APIScope - capture and classify the API calls a web page makes."""

__version__ = "0.1.0"
