"""GearGuard: maintenance tracking for equipment-owning organizations."""

__version__ = "1.0.0"
