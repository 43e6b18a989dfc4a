from advanced_alchemy.base import UUIDAuditBase

Base = UUIDAuditBase

__all__ = ["Base"]
