# plugins/core_versions/models.py

from typing import Optional

from sqlalchemy import BigInteger, Boolean, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from plugins.core_persistence.models import Base


class _VersionColumns:
    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)
    snapshot_json: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    change_summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_tagged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    tag_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)


class ModuleVersionRecord(_VersionColumns, Base):
    __tablename__ = "module_versions"
    __table_args__ = (
        UniqueConstraint("module_id", "user_id", "version_number", name="uq_module_versions_number"),
    )

    # Python 侧统一叫 entity_id，表里保留原列名
    entity_id: Mapped[str] = mapped_column("module_id", String, nullable=False, index=True)


class TemplateVersionRecord(_VersionColumns, Base):
    __tablename__ = "template_versions"
    __table_args__ = (
        UniqueConstraint("template_id", "user_id", "version_number", name="uq_template_versions_number"),
    )

    entity_id: Mapped[str] = mapped_column("template_id", String, nullable=False, index=True)
