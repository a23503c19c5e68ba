from ota_fleet.db.base import Base
from ota_fleet.db.session import SessionLocal, engine

__all__ = ["Base", "SessionLocal", "engine"]
