"""
支付元数据令牌 - 嵌入重定向 URL 与渠道侧 metadata 的防篡改短令牌

令牌格式：``<base64url(json)>.<base64url(hmac-sha256 前 16 字节)>``。
签名只能证明令牌由本服务签发；购物车是否与渠道侧记录一致，仍需在确认路径中
与渠道的权威对象交叉校验。
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from domain.common.exceptions import MalformedMetadataException
from domain.order.entity import Cart


SIGNATURE_BYTES = 16


class MetadataType(str, Enum):
    PAYMENT_INTENT = "payment_intent"
    SESSION = "session"


@dataclass(frozen=True)
class PaymentMetadata:
    type: MetadataType
    id: str
    cart_id: int
    method_id: str
    correlation_id: Optional[str] = None

    @classmethod
    def create_for_payment_intent(
        cls,
        method_id: str,
        cart: Cart,
        processor_object: Any,
        *,
        correlation_id: Optional[str] = None,
    ) -> "PaymentMetadata":
        """
        根据购物车和渠道对象构建元数据

        渠道对象为结账会话（checkout.session）时类型为 SESSION，否则视为支付意图。
        """
        obj_type = getattr(processor_object, "object", None)
        if obj_type == "checkout.session":
            meta_type = MetadataType.SESSION
        else:
            meta_type = MetadataType.PAYMENT_INTENT
        return cls(
            type=meta_type,
            id=str(processor_object.id),
            cart_id=int(cart.id),
            method_id=method_id,
            correlation_id=correlation_id,
        )

    def validate(self, method: Any, cart: Cart) -> list[str]:
        """
        与当前购物车和支付方式交叉校验，返回可展示的错误列表；空列表表示可以继续
        """
        errors: list[str] = []
        if int(cart.id) != self.cart_id:
            errors.append("Payment was started for a different cart")
        if method.method_id != self.method_id:
            errors.append(f"Payment was started with payment method {self.method_id}")
        errors.extend(method.validate_method(cart))
        return errors


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


class PaymentMetadataCodec:
    """元数据编解码器，decode(encode(m)) == m"""

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("metadata codec requires a non-empty secret")
        self._secret = secret.encode("utf-8")

    def _sign(self, payload: str) -> str:
        digest = hmac.new(self._secret, payload.encode("ascii"), hashlib.sha256).digest()
        return _b64encode(digest[:SIGNATURE_BYTES])

    def encode(self, metadata: PaymentMetadata) -> str:
        body = {
            "t": metadata.type.value,
            "i": metadata.id,
            "c": metadata.cart_id,
            "m": metadata.method_id,
        }
        if metadata.correlation_id is not None:
            body["r"] = metadata.correlation_id
        payload = _b64encode(json.dumps(body, separators=(",", ":"), sort_keys=True).encode("utf-8"))
        return f"{payload}.{self._sign(payload)}"

    def decode(self, token: str) -> PaymentMetadata:
        if not isinstance(token, str) or not token:
            raise MalformedMetadataException("empty token")
        payload, sep, signature = token.partition(".")
        if not sep or not payload or not signature:
            raise MalformedMetadataException("missing signature")
        if not signature.isascii():
            raise MalformedMetadataException("non-ascii signature")
        try:
            expected = self._sign(payload)
        except UnicodeEncodeError:
            raise MalformedMetadataException("non-ascii payload")
        if not hmac.compare_digest(expected, signature):
            raise MalformedMetadataException("signature mismatch")
        try:
            body = json.loads(_b64decode(payload).decode("utf-8"))
        except (binascii.Error, ValueError) as exc:
            raise MalformedMetadataException("undecodable payload") from exc
        if not isinstance(body, dict):
            raise MalformedMetadataException("payload is not an object")
        return self._from_body(body)

    @staticmethod
    def _from_body(body: dict) -> PaymentMetadata:
        try:
            meta_type = MetadataType(body["t"])
            ref = body["i"]
            cart_id = body["c"]
            method_id = body["m"]
        except KeyError as exc:
            raise MalformedMetadataException(f"missing field {exc.args[0]}") from exc
        except ValueError as exc:
            raise MalformedMetadataException("unknown metadata type") from exc
        correlation_id = body.get("r")
        if not isinstance(ref, str) or not ref:
            raise MalformedMetadataException("invalid reference id")
        if not isinstance(cart_id, int) or isinstance(cart_id, bool):
            raise MalformedMetadataException("invalid cart id")
        if not isinstance(method_id, str) or not method_id:
            raise MalformedMetadataException("invalid method id")
        if correlation_id is not None and not isinstance(correlation_id, str):
            raise MalformedMetadataException("invalid correlation id")
        return PaymentMetadata(
            type=meta_type,
            id=ref,
            cart_id=cart_id,
            method_id=method_id,
            correlation_id=correlation_id,
        )
