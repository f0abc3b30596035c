"""
对账引擎 - 按对账动作推进订单状态的显式状态机

职责：
1. 根据对账动作和当前流水内容决定是否写入流水、是否迁移订单状态
2. 以流水存在性作为幂等判断：同一 (扣款, 迁移类型) 只生效一次
3. 产生领域事件，由应用层在提交后分发副作用

迁移表（动作 → 前置条件 → 效果）：

=================  =====================================  ==========================================
PROCESS_APPROVED   扣款可解析到订单，非后台发起               审核 → AUTHORIZED，追加 AUTHORIZED 流水
PROCESS_CAPTURED   扣款可解析到订单，非后台发起               审核 → CAPTURED，追加 CAPTURED 流水
PROCESS_SUCCEEDED  非重定向：存在待确认交易                   追加 CHARGE 流水（订单实付金额）
PROCESS_SUCCEEDED  重定向且需回溯购物车                       交由确认路径的成功处理
PROCESS_FAILED     存在待确认交易                           追加 CHARGE_FAIL 流水（金额 0）
PROCESS_REFUND     扣款可解析到订单，非后台发起               追加 FULL/PARTIAL_REFUND 流水（增量金额）
=================  =====================================  ==========================================

状态迁移只在商户开启对应开关时执行；流水总是追加。
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, List, Optional

from application.dtos.payments import Charge, PaymentIntent, Review
from domain.common.exceptions import OrderAlreadyExistsException
from domain.ledger.entity import LedgerEntry, TransactionSource, TransactionType
from domain.ledger.repository import LedgerRepository
from domain.order.entity import Cart, CreditNote, Order, OrderStatus
from domain.order.repository import OrderRepository
from domain.payment.events import CreditNoteIssued, LedgerEntryRecorded, OrderStatusChanged
from domain.payment.method import PaymentMethod, PaymentMethodRegistry
from domain.review.entity import REJECTING_REASONS, ReviewRecord, ReviewStatus
from domain.review.repository import ReviewRepository

from .classifier import ReconciliationAction
from .outcome import ReconciliationOutcome
from .policy import ReconciliationPolicy


class ReconciliationEngine:
    """
    对账引擎

    webhook 与浏览器确认两条入口都汇入同一个引擎，保证只有一个状态迁移函数。
    """

    def __init__(
        self,
        ledger_repository: LedgerRepository,
        order_repository: OrderRepository,
        review_repository: ReviewRepository,
        policy: ReconciliationPolicy,
        methods: PaymentMethodRegistry,
    ):
        self.ledger = ledger_repository
        self.orders = order_repository
        self.reviews = review_repository
        self.policy = policy
        self.methods = methods
        self.events: List = []  # 领域事件收集
        self._transitions: Dict[ReconciliationAction, Callable[..., Awaitable[ReconciliationOutcome]]] = {
            ReconciliationAction.PROCESS_APPROVED: self.process_approved,
            ReconciliationAction.PROCESS_CAPTURED: self.process_captured,
            ReconciliationAction.PROCESS_SUCCEEDED: self.process_succeeded,
            ReconciliationAction.PROCESS_FAILED: self.process_failed,
            ReconciliationAction.PROCESS_REFUND: self.process_refund,
        }

    async def handle(
        self,
        action: ReconciliationAction,
        charge: Optional[Charge],
        *,
        review: Optional[Review] = None,
        event_type: str = "",
    ) -> ReconciliationOutcome:
        if action == ReconciliationAction.IGNORE:
            return ReconciliationOutcome.ignored(f'Ignoring event "{event_type}"')
        if charge is None:
            return ReconciliationOutcome.not_found(f'Event "{event_type}" does not reference a charge')
        if action == ReconciliationAction.PROCESS_APPROVED:
            return await self.process_approved(charge, review)
        return await self._transitions[action](charge)

    # ---- 各动作 ----

    async def process_approved(self, charge: Charge, review: Optional[Review] = None) -> ReconciliationOutcome:
        if charge.from_back_office:
            return ReconciliationOutcome.skipped()

        order_id = await self._order_id_for(charge)
        if not order_id:
            return ReconciliationOutcome.not_found(f"Order not found for charge {charge.id}")

        record = await self._review_for(order_id)
        if review is not None and review.reason in REJECTING_REASONS:
            if record.status == ReviewStatus.REJECTED:
                return ReconciliationOutcome.already_processed(
                    f"Review for order id {order_id} already rejected", order_id
                )
            record.reject(review.reason)
            await self.reviews.save(record)
            return ReconciliationOutcome.resolved(
                f"Review for order id {order_id} closed as {review.reason}", order_id
            )

        if await self.ledger.exists(charge.id, TransactionType.AUTHORIZED):
            return ReconciliationOutcome.already_processed(
                f"Authorization for charge {charge.id} already processed", order_id
            )
        if record.status == ReviewStatus.REJECTED:
            return ReconciliationOutcome.invalid([f"Review for order id {order_id} was rejected"])

        record.authorize()
        await self.reviews.save(record)

        last_digits = await self.ledger.get_last_four_digits_by_charge(charge.id) or charge.card_last4
        changed = await self._record(
            LedgerEntry(
                charge_id=charge.id,
                order_id=order_id,
                type=TransactionType.AUTHORIZED,
                source=TransactionSource.WEBHOOK,
                amount=charge.amount,
                source_type=charge.payment_method_type,
                card_last_digits=last_digits,
                payment_intent_id=charge.payment_intent,
            )
        )
        if changed:
            return ReconciliationOutcome.resolved(f"Order id {order_id} marked as authorized", order_id)
        return ReconciliationOutcome.resolved(f"Order id {order_id} authorized", order_id)

    async def process_captured(self, charge: Charge) -> ReconciliationOutcome:
        if charge.from_back_office:
            return ReconciliationOutcome.skipped()

        order_id = await self._order_id_for(charge)
        if not order_id:
            return ReconciliationOutcome.not_found(f"Order not found for charge {charge.id}")

        if await self.ledger.exists(charge.id, TransactionType.CAPTURED):
            return ReconciliationOutcome.already_processed(
                f"Capture for charge {charge.id} already processed", order_id
            )

        record = await self._review_for(order_id)
        if record.status == ReviewStatus.REJECTED:
            return ReconciliationOutcome.invalid([f"Review for order id {order_id} was rejected"])
        record.capture()
        await self.reviews.save(record)

        last_digits = await self.ledger.get_last_four_digits_by_charge(charge.id) or charge.card_last4
        await self._record(
            LedgerEntry(
                charge_id=charge.id,
                order_id=order_id,
                type=TransactionType.CAPTURED,
                source=TransactionSource.WEBHOOK,
                amount=charge.amount,
                source_type=charge.payment_method_type,
                card_last_digits=last_digits,
                payment_intent_id=charge.payment_intent,
            )
        )
        return ReconciliationOutcome.resolved(f"Captured payment for order id {order_id}", order_id)

    async def process_succeeded(self, charge: Charge) -> ReconciliationOutcome:
        if self.methods.requires_cart_resolution(charge.payment_method_type):
            return ReconciliationOutcome.delegated(
                f"Charge {charge.id} is resolved through payment method {charge.payment_method_type}"
            )

        # 浏览器确认路径可能已用同一扣款ID写入前台 CHARGE 流水
        if await self.ledger.exists(charge.id, TransactionType.CHARGE):
            return ReconciliationOutcome.already_processed(
                f"Charge {charge.id} already processed",
                await self.ledger.get_order_id_by_charge(charge.id),
            )

        pending = await self._find_pending(charge)
        if pending is None:
            return ReconciliationOutcome.not_found(f"No pending transaction for charge id {charge.id}")

        order = await self.orders.get_by_id(pending.order_id)
        if order is None:
            return ReconciliationOutcome.not_found(f"Order with id {pending.order_id} not found")

        await self._record(
            LedgerEntry(
                charge_id=charge.id,
                order_id=order.id,
                type=TransactionType.CHARGE,
                source=TransactionSource.WEBHOOK,
                amount=order.total_paid,
                source_type=pending.source_type,
                card_last_digits=charge.card_last4,
                payment_intent_id=charge.payment_intent,
            )
        )
        return ReconciliationOutcome.resolved(f"Order id {order.id} validated", order.id)

    async def process_failed(self, charge: Charge) -> ReconciliationOutcome:
        if await self.ledger.exists(charge.id, TransactionType.CHARGE_FAIL, TransactionSource.WEBHOOK):
            return ReconciliationOutcome.already_processed(
                f"Failure of charge {charge.id} already processed",
                await self.ledger.get_order_id_by_charge(charge.id),
            )

        pending = await self._find_pending(charge)
        if pending is None:
            return ReconciliationOutcome.not_found(f"No pending transaction for charge id {charge.id}")

        order = await self.orders.get_by_id(pending.order_id)
        if order is None:
            return ReconciliationOutcome.not_found(f"Order with id {pending.order_id} not found")

        await self._record(
            LedgerEntry(
                charge_id=charge.id,
                order_id=order.id,
                type=TransactionType.CHARGE_FAIL,
                source=TransactionSource.WEBHOOK,
                amount=0,
                source_type=pending.source_type,
                card_last_digits=charge.card_last4,
                payment_intent_id=charge.payment_intent,
            )
        )
        return ReconciliationOutcome.resolved(f"Order id {order.id} marked as cancelled", order.id)

    async def process_refund(self, charge: Charge) -> ReconciliationOutcome:
        if any(refund.from_back_office for refund in charge.new_refunds()):
            return ReconciliationOutcome.skipped()

        order_id = await self._order_id_for(charge)
        if not order_id:
            return ReconciliationOutcome.not_found(f"Order not found for charge {charge.id}")

        # 锁住订单行，同一订单的退款事件串行计算增量
        order = await self.orders.get_by_id(order_id, for_update=True)
        if order is None:
            return ReconciliationOutcome.not_found(f"Order with id {order_id} not found")

        if charge.amount_refunded > order.total_paid:
            return ReconciliationOutcome.invalid([
                f"Refunded amount {charge.amount_refunded} exceeds total paid {order.total_paid} "
                f"for order id {order.id}"
            ])

        # 渠道上报的是累计退款额，这里换算为本次增量
        previously_refunded = await self.ledger.get_refunded_amount(charge.id)
        delta = charge.amount_refunded - previously_refunded
        if delta <= 0:
            return ReconciliationOutcome.already_processed(
                f"Refund of {charge.amount_refunded} for charge {charge.id} already processed", order.id
            )

        # 精确整数比较，无容差；累计额达到实付金额即为全额退款，与本次增量大小无关
        full_refund = charge.amount_refunded - order.total_paid == 0
        if full_refund and self.policy.generate_credit_note:
            note = await self.orders.add_credit_note(CreditNote.covering(order))
            self.events.append(CreditNoteIssued(order_id=order.id, charge_id=charge.id, amount=note.amount))

        await self._record(
            LedgerEntry(
                charge_id=charge.id,
                order_id=order.id,
                type=TransactionType.FULL_REFUND if full_refund else TransactionType.PARTIAL_REFUND,
                source=TransactionSource.WEBHOOK,
                amount=delta,
                source_type=charge.payment_method_type,
                card_last_digits=charge.card_last4,
                payment_intent_id=charge.payment_intent,
            )
        )
        kind = "Full" if full_refund else "Partial"
        return ReconciliationOutcome.resolved(f"{kind} refund processed for order id {order.id}", order.id)

    # ---- 浏览器确认路径与前台共用的写入 ----

    async def finalize_success(
        self,
        cart: Cart,
        intent: PaymentIntent,
        method: PaymentMethod,
        *,
        source: TransactionSource,
    ) -> ReconciliationOutcome:
        """
        处理已成功的支付意图（processPayment）

        对扣款ID幂等：webhook 与确认路径可能先后（或并发）到达这里，只有一次生效。
        """
        charge_id = intent.charge_id
        if await self.ledger.exists(charge_id, TransactionType.CHARGE):
            return ReconciliationOutcome.already_processed(
                f"Payment for charge {charge_id} already processed",
                await self.ledger.get_order_id_by_charge(charge_id),
            )

        paid = intent.amount_received or intent.amount
        if paid != cart.total:
            return ReconciliationOutcome.invalid([
                f"Paid amount {paid} does not match cart total {cart.total}"
            ])

        order = await self.orders.get_by_cart_id(cart.id)
        if order is None:
            try:
                order = await self.orders.create(
                    Order.from_cart(cart, payment_method=method.short_name, total_paid=paid)
                )
            except OrderAlreadyExistsException:
                # 并发路径已为该购物车建单，并在同一事务内写入扣款流水
                existing = await self.orders.get_by_cart_id(cart.id)
                return ReconciliationOutcome.already_processed(
                    f"Payment for cart {cart.id} already processed",
                    existing.id if existing else None,
                )

        await self._record(
            LedgerEntry(
                charge_id=charge_id,
                order_id=order.id,
                type=TransactionType.CHARGE,
                source=source,
                amount=order.total_paid,
                source_type=method.method_id,
                card_last_digits=intent.card_last4,
                payment_intent_id=intent.id,
            )
        )
        return ReconciliationOutcome.resolved("Payment successfully processed", order.id)

    async def record_pending_charge(
        self,
        cart: Cart,
        intent: PaymentIntent,
        method: PaymentMethod,
    ) -> ReconciliationOutcome:
        """
        前台发起非重定向支付：建立待支付订单，并写入待确认的前台扣款流水

        扣款ID尚未产生时以支付意图ID为键，webhook 路径按扣款ID或支付意图ID查找。
        订单一旦有落到真实扣款上的 CHARGE 流水，该待确认流水即视为已消费。
        """
        order = await self.orders.get_by_cart_id(cart.id)
        if order is None:
            order = await self.orders.create(
                Order.from_cart(cart, payment_method=method.short_name, total_paid=cart.total)
            )
        if await self.ledger.exists(intent.id, TransactionType.CHARGE, TransactionSource.FRONT_OFFICE):
            return ReconciliationOutcome.already_processed(
                f"Pending charge for intent {intent.id} already recorded", order.id
            )
        await self.ledger.append(
            LedgerEntry(
                charge_id=intent.id,
                order_id=order.id,
                type=TransactionType.CHARGE,
                source=TransactionSource.FRONT_OFFICE,
                amount=order.total_paid,
                source_type=method.method_id,
                payment_intent_id=intent.id,
            )
        )
        return ReconciliationOutcome.resolved(f"Pending charge recorded for order id {order.id}", order.id)

    # ---- 内部工具 ----

    async def _record(self, entry: LedgerEntry) -> bool:
        """追加流水并按策略迁移状态，返回订单状态是否发生变化"""
        saved = await self.ledger.append(entry)
        self.events.append(LedgerEntryRecorded(
            order_id=saved.order_id,
            charge_id=saved.charge_id,
            transaction_type=saved.type.value,
            amount=saved.amount,
        ))
        status = self.policy.target_status(saved.type)
        if status is None:
            return False
        return await self._transition(saved.order_id, status, saved.charge_id)

    async def _transition(self, order_id: int, status: OrderStatus, charge_id: Optional[str]) -> bool:
        changed = await self.orders.change_status(order_id, status)
        if changed:
            self.events.append(OrderStatusChanged(order_id=order_id, charge_id=charge_id, status=status.value))
        return changed

    async def _find_pending(self, charge: Charge) -> Optional[LedgerEntry]:
        pending = await self.ledger.find_pending_charge_transaction(charge.id)
        if pending is None and charge.payment_intent:
            pending = await self.ledger.find_pending_charge_transaction(charge.payment_intent)
        return pending

    async def _order_id_for(self, charge: Charge) -> Optional[int]:
        order_id = await self.ledger.get_order_id_by_charge(charge.id)
        if not order_id and charge.payment_intent:
            order_id = await self.ledger.get_order_id_by_charge(charge.payment_intent)
        return order_id

    async def _review_for(self, order_id: int) -> ReviewRecord:
        record = await self.reviews.get_by_order_id(order_id)
        if record is None:
            record = ReviewRecord(id=None, order_id=order_id)
        return record

    def clear_events(self) -> List[Any]:
        """清空并返回领域事件"""
        events = self.events.copy()
        self.events.clear()
        return events
