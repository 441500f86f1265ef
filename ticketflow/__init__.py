"""Lifecycle and settlement core for the event-ticketing service."""
