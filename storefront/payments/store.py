"""Order record store — key-addressed records with a conditional write.

Every mutation of payment fields goes through compare_and_set(): the write
happens only if the stored fields still equal the values the caller read.
There is no pessimistic locking across network calls.

Backends:
- InMemoryOrderStore: dict of serialized records, asyncio.Lock around CAS
- RedisOrderStore: JSON records, CAS as one server-side Lua script

Key pattern (Redis): order:{id}, order:op:{operation_id} -> id, setting:{key}
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from enum import Enum
from typing import Any, Mapping, Protocol, runtime_checkable

import redis.asyncio as redis_async

from storefront.payments.models import Order
from storefront.payments.state_machine import derive_order_status, normalize_payment_status

logger = logging.getLogger(__name__)

_ORDER_PREFIX = "order:"
_OPERATION_PREFIX = "order:op:"
_SETTING_PREFIX = "setting:"

# Fields a CAS may touch. Everything else is fixed at order creation.
MUTABLE_FIELDS = frozenset(
    {"status", "payment_status", "operation_id", "payment_url", "payment_url_expires_at"}
)


def _encode(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def prepare_changes(changes: Mapping[str, Any]) -> dict[str, Any]:
    """Serialize a change set; payment_status always carries its derived status."""
    unknown = set(changes) - MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Immutable order fields in change set: {sorted(unknown)}")
    if "status" in changes and "payment_status" not in changes:
        raise ValueError("status cannot be set independently of payment_status")
    encoded = {k: _encode(v) for k, v in changes.items()}
    if "payment_status" in encoded:
        payment_status = normalize_payment_status(encoded["payment_status"])
        encoded["payment_status"] = payment_status.value
        encoded["status"] = derive_order_status(payment_status).value
    return encoded


def prepare_expected(expected: Mapping[str, Any]) -> dict[str, Any]:
    return {k: _encode(v) for k, v in expected.items()}


@runtime_checkable
class OrderStore(Protocol):
    """Storage dependency of OrderReconciler."""

    async def get(self, order_id: str) -> Order | None: ...

    async def find_by_operation(self, operation_id: str) -> Order | None: ...

    async def put(self, order: Order) -> None: ...

    async def compare_and_set(
        self, order_id: str, expected: Mapping[str, Any], changes: Mapping[str, Any]
    ) -> bool: ...

    async def get_setting(self, key: str) -> str | None: ...

    async def set_setting(self, key: str, value: str) -> None: ...


class InMemoryOrderStore:
    """Process-local store. Records are copied in and out, never shared."""

    def __init__(self) -> None:
        self._records: dict[str, dict[str, Any]] = {}
        self._by_operation: dict[str, str] = {}
        self._settings: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def get(self, order_id: str) -> Order | None:
        record = self._records.get(order_id)
        return Order.from_dict(copy.deepcopy(record)) if record else None

    async def find_by_operation(self, operation_id: str) -> Order | None:
        order_id = self._by_operation.get(operation_id)
        return await self.get(order_id) if order_id else None

    async def put(self, order: Order) -> None:
        async with self._lock:
            self._records[order.id] = order.to_dict()
            if order.operation_id:
                self._by_operation[order.operation_id] = order.id

    async def compare_and_set(
        self, order_id: str, expected: Mapping[str, Any], changes: Mapping[str, Any]
    ) -> bool:
        want = prepare_expected(expected)
        update = prepare_changes(changes)
        async with self._lock:
            record = self._records.get(order_id)
            if record is None:
                return False
            if any(record.get(k) != v for k, v in want.items()):
                return False
            previous_operation = record.get("operation_id")
            record.update(update)
            operation_id = update.get("operation_id")
            if operation_id:
                if previous_operation and previous_operation != operation_id:
                    self._by_operation.pop(previous_operation, None)
                self._by_operation[operation_id] = order_id
            return True

    async def get_setting(self, key: str) -> str | None:
        return self._settings.get(key)

    async def set_setting(self, key: str, value: str) -> None:
        self._settings[key] = value


# KEYS[1] = order key; ARGV = expected json, changes json, operation index prefix
# Returns 1 written, 0 compare failed, -1 missing record.
# A new operation_id replaces the old index key; the old one is deleted.
_CAS_SCRIPT = """
local raw = redis.call('GET', KEYS[1])
if not raw then return -1 end
local record = cjson.decode(raw)
local expected = cjson.decode(ARGV[1])
local changes = cjson.decode(ARGV[2])
for k, v in pairs(expected) do
  local current = record[k]
  if current == nil then current = cjson.null end
  if current ~= v then return 0 end
end
local previous = record['operation_id']
for k, v in pairs(changes) do record[k] = v end
redis.call('SET', KEYS[1], cjson.encode(record))
local op = changes['operation_id']
if op ~= nil and op ~= cjson.null and op ~= '' then
  if type(previous) == 'string' and previous ~= '' and previous ~= op then
    redis.call('DEL', ARGV[3] .. previous)
  end
  redis.call('SET', ARGV[3] .. op, record['id'])
end
return 1
"""


class RedisOrderStore:
    """Redis-backed store. CAS is atomic on the server (single EVAL)."""

    def __init__(self, client: redis_async.Redis) -> None:
        self._redis = client

    @classmethod
    def from_url(cls, url: str) -> RedisOrderStore:
        return cls(redis_async.from_url(url, decode_responses=True))

    async def get(self, order_id: str) -> Order | None:
        raw = await self._redis.get(f"{_ORDER_PREFIX}{order_id}")
        if raw is None:
            return None
        return Order.from_dict(json.loads(raw))

    async def find_by_operation(self, operation_id: str) -> Order | None:
        order_id = await self._redis.get(f"{_OPERATION_PREFIX}{operation_id}")
        return await self.get(order_id) if order_id else None

    async def put(self, order: Order) -> None:
        await self._redis.set(f"{_ORDER_PREFIX}{order.id}", json.dumps(order.to_dict()))
        if order.operation_id:
            await self._redis.set(f"{_OPERATION_PREFIX}{order.operation_id}", order.id)

    async def compare_and_set(
        self, order_id: str, expected: Mapping[str, Any], changes: Mapping[str, Any]
    ) -> bool:
        result = await self._redis.eval(
            _CAS_SCRIPT,
            1,
            f"{_ORDER_PREFIX}{order_id}",
            json.dumps(prepare_expected(expected)),
            json.dumps(prepare_changes(changes)),
            _OPERATION_PREFIX,
        )
        if int(result) == -1:
            logger.warning("CAS on missing order %s", order_id)
        return int(result) == 1

    async def get_setting(self, key: str) -> str | None:
        return await self._redis.get(f"{_SETTING_PREFIX}{key}")

    async def set_setting(self, key: str, value: str) -> None:
        await self._redis.set(f"{_SETTING_PREFIX}{key}", value)

    async def close(self) -> None:
        await self._redis.aclose()
