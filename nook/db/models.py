import sqlalchemy
from datetime import datetime

from nook.core.database import metadata

# Families table; one SimpleMDM device group per family
families = sqlalchemy.Table(
    "families",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True, autoincrement=True),
    sqlalchemy.Column("name", sqlalchemy.String(100), nullable=False),
    sqlalchemy.Column("parent_id", sqlalchemy.Integer, nullable=False, index=True),
    sqlalchemy.Column("simplemdm_group_id", sqlalchemy.String(100), nullable=True),
    sqlalchemy.Column("created_at", sqlalchemy.DateTime, nullable=True, default=datetime.now),
    sqlalchemy.Column("updated_at", sqlalchemy.DateTime, nullable=True, default=datetime.now, onupdate=datetime.now),
)

# Master profiles table; shared SimpleMDM profiles, one per predefined type
master_profiles = sqlalchemy.Table(
    "master_profiles",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True, autoincrement=True),
    sqlalchemy.Column("name", sqlalchemy.String(100), nullable=False),
    sqlalchemy.Column("type", sqlalchemy.String(20), nullable=False, unique=True),
    sqlalchemy.Column("description", sqlalchemy.Text, nullable=True),
    sqlalchemy.Column("simplemdm_profile_id", sqlalchemy.String(100), nullable=False),
    sqlalchemy.Column("created_at", sqlalchemy.DateTime, nullable=True, default=datetime.now),
)

# Family profiles table; either points at a master profile or owns an individual SimpleMDM profile
family_profiles = sqlalchemy.Table(
    "family_profiles",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True, autoincrement=True),
    sqlalchemy.Column("family_id", sqlalchemy.Integer, sqlalchemy.ForeignKey("families.id", ondelete="CASCADE"), nullable=False, index=True),
    sqlalchemy.Column("name", sqlalchemy.String(100), nullable=False),
    sqlalchemy.Column("type", sqlalchemy.String(20), nullable=False),
    sqlalchemy.Column("description", sqlalchemy.Text, nullable=True),
    sqlalchemy.Column("config", sqlalchemy.Text, nullable=True),
    sqlalchemy.Column("master_profile_id", sqlalchemy.Integer, sqlalchemy.ForeignKey("master_profiles.id", ondelete="RESTRICT"), nullable=True),
    sqlalchemy.Column("simplemdm_profile_id", sqlalchemy.String(100), nullable=True),
    sqlalchemy.Column("created_at", sqlalchemy.DateTime, nullable=True, default=datetime.now),
    sqlalchemy.Column("updated_at", sqlalchemy.DateTime, nullable=True, default=datetime.now, onupdate=datetime.now),
    sqlalchemy.CheckConstraint(
        "(type = 'custom' AND simplemdm_profile_id IS NOT NULL AND master_profile_id IS NULL) OR "
        "(type <> 'custom' AND master_profile_id IS NOT NULL AND simplemdm_profile_id IS NULL)",
        name="family_profile_reference_exclusive",
    ),
)

# Devices table
devices = sqlalchemy.Table(
    "devices",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True, autoincrement=True),
    sqlalchemy.Column("family_id", sqlalchemy.Integer, sqlalchemy.ForeignKey("families.id", ondelete="CASCADE"), nullable=False, index=True),
    sqlalchemy.Column("name", sqlalchemy.String(100), nullable=False),
    sqlalchemy.Column("profile_id", sqlalchemy.Integer, sqlalchemy.ForeignKey("family_profiles.id", ondelete="SET NULL"), nullable=True),
    sqlalchemy.Column("simplemdm_device_id", sqlalchemy.String(100), nullable=True),
    sqlalchemy.Column("created_at", sqlalchemy.DateTime, nullable=True, default=datetime.now),
    sqlalchemy.Column("updated_at", sqlalchemy.DateTime, nullable=True, default=datetime.now, onupdate=datetime.now),
)

# Enrollment codes table; short codes a child's device redeems for a SimpleMDM enrollment url
enrollment_codes = sqlalchemy.Table(
    "enrollment_codes",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True, autoincrement=True),
    sqlalchemy.Column("family_id", sqlalchemy.Integer, sqlalchemy.ForeignKey("families.id", ondelete="CASCADE"), nullable=False, index=True),
    sqlalchemy.Column("code", sqlalchemy.String(6), nullable=False, index=True),
    sqlalchemy.Column("simplemdm_enrollment_id", sqlalchemy.String(100), nullable=False),
    sqlalchemy.Column("simplemdm_enrollment_url", sqlalchemy.Text, nullable=False),
    sqlalchemy.Column("expires_at", sqlalchemy.DateTime, nullable=False),
    sqlalchemy.Column("used", sqlalchemy.Boolean, nullable=False, default=False),
    sqlalchemy.Column("created_at", sqlalchemy.DateTime, nullable=True, default=datetime.now),
)
