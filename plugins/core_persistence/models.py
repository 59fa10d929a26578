# plugins/core_persistence/models.py

from sqlalchemy import BigInteger, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """所有插件共享的声明基类。各插件在自己的 models.py 中挂表，启动时统一建表。"""
    pass


class UserDataRecord(Base):
    __tablename__ = "user_data"

    user_id: Mapped[str] = mapped_column(String, primary_key=True)
    # 完整工作集的 JSON 文本，原样保存
    data_json: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
