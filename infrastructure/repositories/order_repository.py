"""
订单/购物车仓储实现 - 使用SQLAlchemy实现数据访问
"""
from typing import Optional
from datetime import datetime, timezone
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from domain.common.exceptions import OrderAlreadyExistsException, OrderNotFoundException
from domain.order.entity import Cart, CartLine, CreditNote, Order, OrderLine, OrderStatus
from domain.order.repository import CartRepository, OrderRepository
from infrastructure.models.order import CartModel, CreditNoteModel, OrderHistoryModel, OrderModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyOrderRepository(OrderRepository):
    """订单仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OrderModel) -> Order:
        """将数据库模型转换为领域实体"""
        return Order(
            id=model.id,
            cart_id=model.cart_id,
            customer_id=model.customer_id,
            currency=model.currency,
            total_paid=int(model.total_paid),
            shipping=int(model.shipping or 0),
            status=OrderStatus(model.status),
            payment_method=model.payment_method,
            has_invoice=bool(model.has_invoice),
            lines=[
                OrderLine(
                    id=line.get("id"),
                    product_id=line["product_id"],
                    quantity=line["quantity"],
                    unit_price=line["unit_price"],
                )
                for line in (model.lines or [])
            ],
            created_at=model.created_at,
        )

    def _to_model(self, entity: Order) -> OrderModel:
        """将领域实体转换为数据库模型；订单行ID在订单内按顺序编号"""
        return OrderModel(
            cart_id=entity.cart_id,
            customer_id=entity.customer_id,
            currency=entity.currency,
            total_paid=entity.total_paid,
            shipping=entity.shipping,
            status=entity.status.value,
            payment_method=entity.payment_method,
            has_invoice=entity.has_invoice,
            lines=[
                {
                    "id": line.id if line.id is not None else index,
                    "product_id": line.product_id,
                    "quantity": line.quantity,
                    "unit_price": line.unit_price,
                }
                for index, line in enumerate(entity.lines, start=1)
            ],
        )

    async def get_by_id(self, order_id: int, *, for_update: bool = False) -> Optional[Order]:
        stmt = select(OrderModel).where(OrderModel.id == order_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def get_by_cart_id(self, cart_id: int) -> Optional[Order]:
        result = await self.session.execute(select(OrderModel).where(OrderModel.cart_id == cart_id))
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def create(self, order: Order) -> Order:
        """创建订单；同一购物车的并发创建只有一个成功"""
        db_order = self._to_model(order)
        try:
            # 使用保存点，冲突时只回滚本次插入而不影响外层事务
            async with self.session.begin_nested():
                self.session.add(db_order)
                await self.session.flush()
        except IntegrityError as e:
            msg = str(e).lower()
            if "cart_id" in msg or "unique" in msg or "duplicate" in msg:
                logger.warning("order_create_conflict", cart_id=order.cart_id)
                raise OrderAlreadyExistsException(order.cart_id)
            raise
        await self.session.refresh(db_order)
        logger.info(
            "order_created",
            order_id=db_order.id,
            cart_id=db_order.cart_id,
            total_paid=db_order.total_paid,
            status=db_order.status,
        )
        return self._to_entity(db_order)

    async def change_status(self, order_id: int, status: OrderStatus) -> bool:
        """比较并设置订单状态，写入历史记录"""
        result = await self.session.execute(select(OrderModel.status).where(OrderModel.id == order_id))
        current = result.scalar_one_or_none()
        if current is None:
            raise OrderNotFoundException(order_id)
        if current == status.value:
            return False

        updated = await self.session.execute(
            update(OrderModel)
            .where(OrderModel.id == order_id, OrderModel.status == current)
            .values(status=status.value, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session="fetch")
        )
        if updated.rowcount == 0:
            # 并发请求已先一步修改状态
            logger.info("order_status_change_lost_race", order_id=order_id, status=status.value)
            return False

        self.session.add(OrderHistoryModel(order_id=order_id, previous_status=current, status=status.value))
        await self.session.flush()
        logger.info("order_status_changed", order_id=order_id, previous_status=current, status=status.value)
        return True

    async def add_credit_note(self, credit_note: CreditNote) -> CreditNote:
        db_note = CreditNoteModel(
            order_id=credit_note.order_id,
            amount=credit_note.amount,
            shipping=credit_note.shipping,
            quantities={str(k): v for k, v in credit_note.quantities.items()},
        )
        self.session.add(db_note)
        await self.session.flush()
        await self.session.refresh(db_note)
        logger.info("credit_note_created", credit_note_id=db_note.id, order_id=db_note.order_id, amount=db_note.amount)
        return CreditNote(
            id=db_note.id,
            order_id=db_note.order_id,
            amount=int(db_note.amount),
            shipping=int(db_note.shipping),
            quantities={int(k): v for k, v in (db_note.quantities or {}).items()},
            created_at=db_note.created_at,
        )


class SQLAlchemyCartRepository(CartRepository):
    """购物车仓储（只读）"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: CartModel) -> Cart:
        return Cart(
            id=model.id,
            customer_id=model.customer_id,
            currency=model.currency,
            total=int(model.total),
            shipping=int(model.shipping or 0),
            lines=[
                CartLine(product_id=line["product_id"], quantity=line["quantity"], unit_price=line["unit_price"])
                for line in (model.lines or [])
            ],
        )

    async def get_by_id(self, cart_id: int) -> Optional[Cart]:
        result = await self.session.execute(select(CartModel).where(CartModel.id == cart_id))
        db_cart = result.scalar_one_or_none()
        return self._to_entity(db_cart) if db_cart else None
