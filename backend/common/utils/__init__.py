"""Common utility functions."""

from .geo import calculate_distance, is_valid_coordinate

__all__ = [
    "calculate_distance",
    "is_valid_coordinate",
]
