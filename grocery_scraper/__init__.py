"""Grocery Scraper - product listings from retail category pages."""
