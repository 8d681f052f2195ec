"""Exceptions and the request sanitizer/validator capabilities."""
