from . import auth, directory, health, room

__all__ = ["auth", "directory", "health", "room"]
