"""
流水仓储实现 - 使用SQLAlchemy实现数据访问
"""
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, exists, or_
from sqlalchemy.orm import aliased

from domain.ledger.entity import (
    CONFIRMING_TYPES,
    REFUND_TYPES,
    LedgerEntry,
    TransactionSource,
    TransactionType,
)
from domain.ledger.repository import LedgerRepository
from infrastructure.models.ledger import StripeTransactionModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyLedgerRepository(LedgerRepository):
    """流水仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: StripeTransactionModel) -> LedgerEntry:
        """将数据库模型转换为领域实体"""
        return LedgerEntry(
            id=model.id,
            charge_id=model.charge_id,
            order_id=model.order_id,
            type=TransactionType(model.type),
            source=TransactionSource(model.source),
            source_type=model.source_type,
            amount=int(model.amount),
            card_last_digits=model.card_last_digits,
            payment_intent_id=model.payment_intent_id,
            created_at=model.created_at,
        )

    def _to_model(self, entity: LedgerEntry) -> StripeTransactionModel:
        """将领域实体转换为数据库模型"""
        model = StripeTransactionModel(
            charge_id=entity.charge_id,
            order_id=entity.order_id,
            type=entity.type.value,
            source=entity.source.value,
            source_type=entity.source_type,
            amount=entity.amount,
            card_last_digits=entity.card_last_digits,
            payment_intent_id=entity.payment_intent_id,
        )
        if entity.created_at is not None:
            model.created_at = entity.created_at
        return model

    async def append(self, entry: LedgerEntry) -> LedgerEntry:
        """追加流水"""
        db_entry = self._to_model(entry)
        self.session.add(db_entry)
        await self.session.flush()
        await self.session.refresh(db_entry)
        logger.info(
            "ledger_entry_appended",
            entry_id=db_entry.id,
            charge_id=db_entry.charge_id,
            order_id=db_entry.order_id,
            type=db_entry.type,
            source=db_entry.source,
            amount=db_entry.amount,
        )
        return self._to_entity(db_entry)

    async def find_pending_charge_transaction(self, charge_id: str) -> Optional[LedgerEntry]:
        """最近一条尚未被确认的前台扣款流水"""
        confirmed = _webhook_confirmation_exists(charge_id)
        settled = _order_has_settled_charge()
        result = await self.session.execute(
            select(StripeTransactionModel)
            .where(
                StripeTransactionModel.charge_id == charge_id,
                StripeTransactionModel.source == TransactionSource.FRONT_OFFICE.value,
                StripeTransactionModel.type == TransactionType.CHARGE.value,
                ~confirmed,
                ~settled,
            )
            .order_by(StripeTransactionModel.id.desc())
            .limit(1)
        )
        db_entry = result.scalar_one_or_none()
        return self._to_entity(db_entry) if db_entry else None

    async def get_order_id_by_charge(self, charge_id: str) -> Optional[int]:
        result = await self.session.execute(
            select(StripeTransactionModel.order_id)
            .where(StripeTransactionModel.charge_id == charge_id)
            .order_by(StripeTransactionModel.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_refunded_amount(self, charge_id: str) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.sum(StripeTransactionModel.amount), 0))
            .where(
                StripeTransactionModel.charge_id == charge_id,
                StripeTransactionModel.type.in_([t.value for t in REFUND_TYPES]),
            )
        )
        return int(result.scalar() or 0)

    async def get_last_four_digits_by_charge(self, charge_id: str) -> Optional[str]:
        result = await self.session.execute(
            select(StripeTransactionModel.card_last_digits)
            .where(
                StripeTransactionModel.charge_id == charge_id,
                StripeTransactionModel.card_last_digits.is_not(None),
            )
            .order_by(StripeTransactionModel.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def exists(
        self,
        charge_id: str,
        type: TransactionType,
        source: Optional[TransactionSource] = None,
    ) -> bool:
        query = (
            select(func.count())
            .select_from(StripeTransactionModel)
            .where(
                StripeTransactionModel.charge_id == charge_id,
                StripeTransactionModel.type == type.value,
            )
        )
        if source is not None:
            query = query.where(StripeTransactionModel.source == source.value)
        result = await self.session.execute(query)
        return (result.scalar() or 0) > 0


def _webhook_confirmation_exists(charge_id: str):
    """同一扣款是否已有 webhook 写入的扣款/失败流水"""
    confirming = aliased(StripeTransactionModel)
    return exists().where(
        confirming.charge_id == charge_id,
        confirming.source == TransactionSource.WEBHOOK.value,
        confirming.type.in_([t.value for t in CONFIRMING_TYPES]),
    )


def _order_has_settled_charge():
    """外层流水所属订单是否已有落到真实扣款上的 CHARGE 流水（以支付意图为键的待确认流水除外）"""
    settled = aliased(StripeTransactionModel)
    return exists().where(
        settled.order_id == StripeTransactionModel.order_id,
        settled.type == TransactionType.CHARGE.value,
        or_(
            settled.payment_intent_id.is_(None),
            settled.charge_id != settled.payment_intent_id,
        ),
    )
