"""Destination adapters. Each module provides one Destination subclass selected by config 'type'."""
