"""
Generic utility functions shared across modules.

Includes the clock abstraction and timestamp conversion to epoch milliseconds.
"""
