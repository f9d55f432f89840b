from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar

from botocore.client import BaseClient
from botocore.exceptions import ClientError

from cardsync.services.limits import RateLimitConfig
from cardsync.services.rate_limiter import CounterState

_EXPRESSION_NAMES = {
    "#count": "count",
    "#window_seconds": "window_seconds",
    "#request_limit": "request_limit",
    "#limit_type": "limit_type",
    "#item_type": "item_type",
}
_MAX_WRITE_ATTEMPTS = 3


@dataclass(frozen=True)
class DynamoRateLimitStore:
    """
    Fixed-window counters shared by every instance through one DynamoDB table.

    Items are keyed pk=<hashed identifier>, sk=limit:<type>:window:<seconds>.
    The increment is conditional on the item still being in the current window
    and not carrying a block; a ConditionalCheckFailedException means one of
    those is false, and a consistent read tells which.
    """

    client: BaseClient
    table_name: str
    ttl_buffer_seconds: int = 5

    supports_consumed_points: ClassVar[bool] = True

    def hit(self, *, key: str, limit_type: str, config: RateLimitConfig, now: int) -> CounterState:
        window_start = now - (now % config.window_seconds)
        reset_epoch = window_start + config.window_seconds
        item_key = self._item_key(key, limit_type, config)
        write = dict(
            item_key=item_key,
            window_start=window_start,
            expires_at=reset_epoch + self.ttl_buffer_seconds,
            limit_type=limit_type,
            config=config,
        )

        # A failed reset means another instance rolled the window first; count into it.
        for attempt in range(_MAX_WRITE_ATTEMPTS):
            try:
                attributes = self._increment_window(**write)
                break
            except ClientError as err:
                if not _is_condition_failure(err):
                    raise
            current = self._get_item(item_key)
            blocked_until = _int_attr(current, "blocked_until")
            if blocked_until is not None and blocked_until > now:
                # Blocked: report without counting.
                return CounterState(
                    count=_int_attr(current, "count") or 0,
                    window_reset_epoch=(_int_attr(current, "window_start") or window_start) + config.window_seconds,
                    blocked_until=blocked_until,
                )
            try:
                attributes = self._reset_window(now=now, **write)
                break
            except ClientError as err:
                if not _is_condition_failure(err) or attempt == _MAX_WRITE_ATTEMPTS - 1:
                    raise

        count = _int_attr(attributes, "count") or 0
        if count > config.max_attempts and config.block_seconds > 0:
            blocked_until = now + config.block_seconds
            self._set_block(item_key=item_key, blocked_until=blocked_until)
            return CounterState(count=count, window_reset_epoch=reset_epoch, blocked_until=blocked_until)

        return CounterState(count=count, window_reset_epoch=reset_epoch)

    def consumed_points(self, *, key: str, limit_type: str, config: RateLimitConfig, now: int) -> int:
        item = self._get_item(self._item_key(key, limit_type, config))
        if not item:
            return 0
        count = _int_attr(item, "count") or 0
        blocked_until = _int_attr(item, "blocked_until")
        if blocked_until is not None:
            # Blocked requests are rejected outright; no pause first.
            return 0
        window_start = now - (now % config.window_seconds)
        return count if _int_attr(item, "window_start") == window_start else 0

    def close(self) -> None:
        self.client.close()

    def _increment_window(
        self,
        *,
        item_key: dict[str, Any],
        window_start: int,
        expires_at: int,
        limit_type: str,
        config: RateLimitConfig,
    ) -> dict[str, Any]:
        response = self.client.update_item(
            TableName=self.table_name,
            Key=item_key,
            UpdateExpression=(
                "SET window_start = :window_start, #count = if_not_exists(#count, :zero) + :inc, "
                "expires_at = :expires_at, #window_seconds = :window_seconds, "
                "#request_limit = :request_limit, #limit_type = :limit_type, #item_type = :item_type"
            ),
            ConditionExpression=(
                "(attribute_not_exists(window_start) OR window_start = :window_start) "
                "AND attribute_not_exists(blocked_until)"
            ),
            ExpressionAttributeNames=_EXPRESSION_NAMES,
            ExpressionAttributeValues={
                ":window_start": {"N": str(window_start)},
                ":expires_at": {"N": str(expires_at)},
                ":inc": {"N": "1"},
                ":zero": {"N": "0"},
                ":window_seconds": {"N": str(config.window_seconds)},
                ":request_limit": {"N": str(config.max_attempts)},
                ":limit_type": {"S": limit_type},
                ":item_type": {"S": "counter"},
            },
            ReturnValues="ALL_NEW",
        )
        return response.get("Attributes", {})

    def _reset_window(
        self,
        *,
        now: int,
        item_key: dict[str, Any],
        window_start: int,
        expires_at: int,
        limit_type: str,
        config: RateLimitConfig,
    ) -> dict[str, Any]:
        # Stale window or lapsed block: start over at one.
        response = self.client.update_item(
            TableName=self.table_name,
            Key=item_key,
            UpdateExpression=(
                "SET window_start = :window_start, #count = :one, expires_at = :expires_at, "
                "#window_seconds = :window_seconds, #request_limit = :request_limit, "
                "#limit_type = :limit_type, #item_type = :item_type REMOVE blocked_until"
            ),
            ConditionExpression=(
                "(attribute_not_exists(window_start) OR window_start < :window_start OR blocked_until <= :now) "
                "AND (attribute_not_exists(blocked_until) OR blocked_until <= :now)"
            ),
            ExpressionAttributeNames=_EXPRESSION_NAMES,
            ExpressionAttributeValues={
                ":window_start": {"N": str(window_start)},
                ":one": {"N": "1"},
                ":now": {"N": str(now)},
                ":expires_at": {"N": str(expires_at)},
                ":window_seconds": {"N": str(config.window_seconds)},
                ":request_limit": {"N": str(config.max_attempts)},
                ":limit_type": {"S": limit_type},
                ":item_type": {"S": "counter"},
            },
            ReturnValues="ALL_NEW",
        )
        return response.get("Attributes", {})

    def _set_block(self, *, item_key: dict[str, Any], blocked_until: int) -> None:
        # TTL must outlive the block or DynamoDB would drop it early.
        self.client.update_item(
            TableName=self.table_name,
            Key=item_key,
            UpdateExpression="SET blocked_until = :blocked_until, expires_at = :expires_at",
            ExpressionAttributeValues={
                ":blocked_until": {"N": str(blocked_until)},
                ":expires_at": {"N": str(blocked_until + self.ttl_buffer_seconds)},
            },
        )

    def _get_item(self, item_key: dict[str, Any]) -> dict[str, Any]:
        response = self.client.get_item(
            TableName=self.table_name,
            Key=item_key,
            ConsistentRead=True,
        )
        return response.get("Item") or {}

    @staticmethod
    def _item_key(key: str, limit_type: str, config: RateLimitConfig) -> dict[str, Any]:
        return {"pk": {"S": key}, "sk": {"S": f"limit:{limit_type}:window:{config.window_seconds}"}}


def _is_condition_failure(err: ClientError) -> bool:
    return err.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"


def _int_attr(item: dict[str, Any], name: str) -> int | None:
    value = item.get(name, {}).get("N")
    return int(value) if value is not None else None
