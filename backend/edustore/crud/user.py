"""用户 CRUD 操作"""
from sqlmodel import Session, select

from edustore.core.security import get_password_hash, verify_password
from edustore.models import User


def get_by_email(*, session: Session, email: str) -> User | None:
    """根据邮箱查询用户（不区分大小写）"""
    statement = select(User).where(User.email == email.strip().lower())
    return session.exec(statement).first()


def create(
    *,
    session: Session,
    email: str,
    password: str,
    full_name: str | None = None,
    cpf_cnpj: str | None = None,
    phone: str | None = None,
    is_superuser: bool = False,
) -> User:
    """创建用户（邮箱统一转小写存储）"""
    user = User(
        email=email.strip().lower(),
        hashed_password=get_password_hash(password),
        full_name=full_name,
        cpf_cnpj=cpf_cnpj,
        phone=phone,
        is_superuser=is_superuser,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def authenticate(*, session: Session, email: str, password: str) -> User | None:
    user = get_by_email(session=session, email=email)
    if not user or not user.is_active:
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user
