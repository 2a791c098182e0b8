"""第三方集成配置查询"""
from sqlmodel import Session, select

from edustore.models import ApiIntegration


def get_active_integration(*, session: Session, name: str) -> ApiIntegration | None:
    statement = select(ApiIntegration).where(
        ApiIntegration.name == name, ApiIntegration.is_active == True  # noqa: E712
    )
    return session.exec(statement).first()
