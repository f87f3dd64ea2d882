"""Service package exports.

The scheduling engine is split by concern; callers usually import the
module they need directly (``from barbershop.app.services import
appointment_services``).
"""

from . import (
    appointment_services,
    block_services,
    conflict_services,
    directory_services,
    group_services,
    shared_services,
)

__all__ = [
    "appointment_services",
    "block_services",
    "conflict_services",
    "directory_services",
    "group_services",
    "shared_services",
]
