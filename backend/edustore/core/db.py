"""
数据库连接模块

管理数据库引擎和会话的创建。

重要提示：
- 数据库表结构通过 Alembic 迁移管理，不要在这里创建表
- 确保在使用前导入所有模型（edustore.models），否则关系可能无法正确初始化
"""
import logging
from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlmodel import Session, create_engine

from edustore.core.config import settings

logger = logging.getLogger(__name__)

# 创建数据库引擎（连接池）
engine = create_engine(str(settings.SQLALCHEMY_DATABASE_URI))


def dialect_insert(session: Session, table: Any) -> Any:
    """
    返回当前方言的 INSERT 构造（支持 ON CONFLICT）

    权益发放、webhook 事件登记都依赖唯一约束 + ON CONFLICT 实现"不存在才插入"，
    PostgreSQL 和 SQLite（测试）都支持这一语法。

    Raises:
        RuntimeError: 当前数据库方言不支持 ON CONFLICT 时
    """
    name = session.get_bind().dialect.name
    if name == "postgresql":
        return postgresql.insert(table)
    if name == "sqlite":
        return sqlite.insert(table)
    raise RuntimeError(f"Unsupported dialect for conditional insert: {name}")


def init_db(session: Session) -> None:
    """
    初始化数据库种子数据

    表结构由 Alembic 创建；这里只负责创建第一个管理员账户（如果配置了的话）。
    管理员用于访问人工对账和测试确认接口。
    """
    # Imported here so importing the engine doesn't pull in every model.
    from edustore import crud

    if not settings.FIRST_SUPERUSER or not settings.FIRST_SUPERUSER_PASSWORD:
        return

    user = crud.get_user_by_email(session=session, email=settings.FIRST_SUPERUSER)
    if user:
        return
    crud.create_user(
        session=session,
        email=settings.FIRST_SUPERUSER,
        password=settings.FIRST_SUPERUSER_PASSWORD,
        full_name="Administrator",
        is_superuser=True,
    )
    logger.info(f"Created first superuser {settings.FIRST_SUPERUSER}")
