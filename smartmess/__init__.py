"""SmartMess billing and subscription API."""

__version__ = "1.0.0"
