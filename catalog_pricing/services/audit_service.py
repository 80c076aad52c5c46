from typing import Optional, List, Tuple
import uuid
import logging

from pydantic import BaseModel
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_pricing.models.audit_log import AuditLog, AuditAction
from catalog_pricing.models.margin_rule import MarginRule
from catalog_pricing.models.special_offer import SpecialOffer
from catalog_pricing.schemas.audit_log import OfferState, RuleState

logger = logging.getLogger(__name__)


def offer_state(offer: SpecialOffer) -> OfferState:
    return OfferState.model_validate(offer, from_attributes=True)


def rule_state(rule: MarginRule) -> RuleState:
    return RuleState.model_validate(rule, from_attributes=True)


class AuditService:
    """
    Append-only pricing audit log.

    Entries are only ever inserted.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(
        self,
        action: AuditAction,
        snapshot: BaseModel,
        affected_count: int = 0,
        performed_by: Optional[str] = None,
        rule_id: Optional[uuid.UUID] = None,
        rollback_data: Optional[BaseModel] = None,
        commit: bool = True,
    ) -> AuditLog:
        """
        Create an audit log entry.

        Args:
            action: The pricing operation performed
            snapshot: Typed payload that triggered it (stored as JSON)
            affected_count: Variants changed by the operation
            performed_by: Operator id
            rule_id: Rule/offer the entry is about, if any
            rollback_data: Prior state, for rule updates
            commit: Commit immediately (False when part of a larger transaction)

        Returns:
            The created AuditLog entry
        """
        entry = AuditLog(
            action=action.value,
            affected_count=affected_count,
            performed_by=performed_by,
            rule_id=rule_id,
            rule_snapshot=snapshot.model_dump(mode="json"),
            rollback_data=rollback_data.model_dump(mode="json") if rollback_data is not None else None,
        )
        self.db.add(entry)
        if commit:
            await self.db.commit()
        else:
            await self.db.flush()
        logger.info("Audit %s affected=%d by=%s", action.value, affected_count, performed_by)
        return entry

    async def list_entries(
        self,
        action: Optional[str] = None,
        rule_id: Optional[uuid.UUID] = None,
        performed_by: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[AuditLog], int]:
        """
        Get audit entries, newest first, with filtering.
        """
        stmt = select(AuditLog)
        count_stmt = select(func.count()).select_from(AuditLog)

        conditions = []
        if action:
            conditions.append(AuditLog.action == action.lower())
        if rule_id:
            conditions.append(AuditLog.rule_id == rule_id)
        if performed_by:
            conditions.append(AuditLog.performed_by == performed_by)

        if conditions:
            stmt = stmt.where(*conditions)
            count_stmt = count_stmt.where(*conditions)

        total = (await self.db.execute(count_stmt)).scalar() or 0

        stmt = stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset(skip).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all()), total
