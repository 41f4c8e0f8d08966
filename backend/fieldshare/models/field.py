# backend/fieldshare/models/field.py
from sqlalchemy import Boolean, Column, Date, DateTime, Float, Integer, JSON, String, Text, Index
from .base import Base, new_id, utcnow

FIELD_STATUSES = ("planted", "growing", "harvested", "fallow")


class FarmField(Base):
    __tablename__ = "fields"
    id = Column(String(36), primary_key=True, default=new_id)
    owner_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    geometry = Column(Text, nullable=False)  # GeoJSON string (Polygon, EPSG:4326)

    # derived from geometry on every boundary write
    centroid_lon = Column(Float, nullable=False)
    centroid_lat = Column(Float, nullable=False)
    min_lon = Column(Float, nullable=False)
    min_lat = Column(Float, nullable=False)
    max_lon = Column(Float, nullable=False)
    max_lat = Column(Float, nullable=False)

    acres = Column(Float, nullable=False)
    crop = Column(String, nullable=False)
    spray_type = Column(String, nullable=True)  # legacy single value
    spray_types = Column(JSON, nullable=True)  # ["dicamba", "2,4-D", ...]
    variety = Column(String, nullable=True)
    status = Column(String, default="planted")  # planted|growing|harvested|fallow
    season = Column(String, nullable=False)
    planting_date = Column(Date, nullable=True)
    harvest_date = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)  # owner only

    adjacency_stale = Column(Boolean, nullable=False, default=True)
    adjacency_computed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        Index("ix_fields_bbox", "min_lon", "max_lon", "min_lat", "max_lat"),
    )
