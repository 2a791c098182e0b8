"""
商品目录模型模块

课程、电子书、文档三类可购买商品。目录的浏览与管理不在本服务内，
这里只保留结账需要的字段：标题、描述、价格、是否上架、下载地址。
价格统一使用整数（分，巴西雷亚尔的 centavos）。
"""
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import BigInteger, Column, DateTime, Text
from sqlmodel import Field, SQLModel

from edustore.core.snowflake import generate_id
from edustore.enums import ItemKind

from .base import utc_now


class Course(SQLModel, table=True):
    __tablename__ = "courses"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    title: str = Field(max_length=255)
    description: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    price: int = Field(default=0, ge=0)
    is_published: bool = Field(default=True)
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class Ebook(SQLModel, table=True):
    __tablename__ = "ebooks"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    title: str = Field(max_length=255)
    description: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    price: int = Field(default=0, ge=0)
    file_url: str | None = Field(default=None, max_length=1024)
    is_published: bool = Field(default=True)
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class Document(SQLModel, table=True):
    """学术文档（论文、现成作业等可下载资料）"""
    __tablename__ = "documents"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    title: str = Field(max_length=255)
    description: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    price: int = Field(default=0, ge=0)
    file_url: str | None = Field(default=None, max_length=1024)
    is_published: bool = Field(default=True)
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


Purchasable = Course | Ebook | Document

CATALOG_MODELS: dict[ItemKind, type[Course] | type[Ebook] | type[Document]] = {
    ItemKind.course: Course,
    ItemKind.ebook: Ebook,
    ItemKind.document: Document,
}


@dataclass(frozen=True)
class ItemRef:
    """
    可购买商品的引用（判别联合）

    kind 决定 id 指向哪张表；请求边界上已经保证三种 ID 恰好出现一个。
    """
    kind: ItemKind
    id: int

    @property
    def is_downloadable(self) -> bool:
        return self.kind in (ItemKind.ebook, ItemKind.document)
