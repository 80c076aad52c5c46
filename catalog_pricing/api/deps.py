from typing import Annotated, Optional
import logging

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_pricing.config import Settings
from catalog_pricing.database import get_db


logger = logging.getLogger(__name__)


async def get_operator_id(
    x_operator_id: Annotated[Optional[str], Header(max_length=100)] = None,
) -> Optional[str]:
    """
    Operator identity for audit entries.

    Authentication happens upstream; the gateway forwards the operator id
    in the X-Operator-Id header.
    """
    if not x_operator_id:
        return None
    return x_operator_id.strip() or None


def get_app_settings(request: Request) -> Settings:
    """Settings the application was created with."""
    return request.app.state.settings


# Type aliases for cleaner endpoint signatures
DB = Annotated[AsyncSession, Depends(get_db)]
Operator = Annotated[Optional[str], Depends(get_operator_id)]
AppSettings = Annotated[Settings, Depends(get_app_settings)]
