"""Venue adapters implementing ExchangeClient."""
