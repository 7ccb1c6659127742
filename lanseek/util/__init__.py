"""Utility functions for lanseek."""

from lanseek.util.ip import get_interface_address_strings

__all__ = ["get_interface_address_strings"]
