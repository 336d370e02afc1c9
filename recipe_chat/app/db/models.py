from datetime import datetime
import enum
import uuid

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from recipe_chat.app.db.base import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class SourceType(str, enum.Enum):
    MANUAL = "manual"
    TEXT = "text"
    URL = "url"
    VIDEO = "video"


class MemberRole(str, enum.Enum):
    READ = "read"
    WRITE = "write"


class MemberStatus(str, enum.Enum):
    ACTIVE = "active"
    PENDING = "pending"
    INACTIVE = "inactive"


class RecipeGroup(Base):
    __tablename__ = "recipe_groups"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String, nullable=False)
    owner_id = Column(String, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    members = relationship("GroupMember", back_populates="group", cascade="all, delete-orphan")
    recipes = relationship("Recipe", back_populates="group", cascade="all, delete-orphan")


class GroupMember(Base):
    __tablename__ = "group_members"
    __table_args__ = (UniqueConstraint("group_id", "user_id", name="uq_group_member"),)

    id = Column(Integer, primary_key=True)
    group_id = Column(String(36), ForeignKey("recipe_groups.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, index=True)
    email = Column(String)
    role = Column(Enum(MemberRole, native_enum=False), nullable=False, default=MemberRole.READ)
    status = Column(Enum(MemberStatus, native_enum=False), nullable=False, default=MemberStatus.PENDING)
    invited_at = Column(DateTime, default=datetime.utcnow)
    joined_at = Column(DateTime)

    group = relationship("RecipeGroup", back_populates="members")


class Recipe(Base):
    __tablename__ = "recipes"
    __table_args__ = (Index("ix_recipes_group_created", "group_id", "created_at"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String, nullable=False, index=True)
    group_id = Column(String(36), ForeignKey("recipe_groups.id", ondelete="CASCADE"), nullable=False)
    title = Column(String, nullable=False)
    ingredients = Column(JSON, nullable=False, default=list)
    steps = Column(JSON, nullable=False, default=list)
    tags = Column(JSON, nullable=False, default=list)
    source_type = Column(Enum(SourceType, native_enum=False), nullable=False, default=SourceType.MANUAL)
    source_url = Column(String)
    image_url = Column(String)
    video_url = Column(String)
    video_platform = Column(String)
    cookbook_name = Column(String)
    cookbook_page = Column(String)
    contributor_name = Column(String)
    embedding = Column(JSON, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    group = relationship("RecipeGroup", back_populates="recipes")


class ChatMessage(Base):
    __tablename__ = "chat_history"

    id = Column(Integer, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    role = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
