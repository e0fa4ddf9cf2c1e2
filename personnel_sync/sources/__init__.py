"""Source adapters. Each module provides one Source subclass selected by config 'type'."""
