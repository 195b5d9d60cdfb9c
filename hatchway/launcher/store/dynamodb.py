"""DynamoDB pay-model store.

Scans the pay-model table with a filter on user and request status::

    user_id = :user AND (request_status = "active" OR request_status = "above limit")
    [AND current_pay_model = true]

Set-current is one ``TransactWriteItems`` call: every other record of the
user is cleared and the target is set under an existence condition.
Concurrent set-current calls for the same user touch the same items, so
DynamoDB serializes them or cancels one with ``TransactionCanceledException``.

Uses ``anyio.to_thread.run_sync`` to run boto3 calls in the thread pool.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from functools import partial
from typing import Any

import boto3
from anyio import to_thread
from boto3.dynamodb.types import TypeDeserializer
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from hatchway.launcher.models.paymodel import ACTIVE_REQUEST_STATUSES, PayModel
from hatchway.launcher.store.base import PayModelStoreError

# DynamoDB limit on actions per TransactWriteItems request.
MAX_TRANSACTION_ITEMS = 100

_deserializer = TypeDeserializer()


def _create_dynamodb_client(region: str, role_arn: str | None = None) -> tuple[Any, datetime | None]:
    """Create a DynamoDB client, assuming *role_arn* first when given.

    Returns the client and the expiry of the assumed credentials (``None``
    for ambient credentials).
    """
    config = Config(retries={"max_attempts": 5, "mode": "standard"})
    if not role_arn:
        return boto3.client("dynamodb", region_name=region, config=config), None

    sts = boto3.client("sts", region_name=region)
    creds = sts.assume_role(RoleArn=role_arn, RoleSessionName="hatchway-paymodels")["Credentials"]
    client = boto3.client(
        "dynamodb",
        region_name=region,
        aws_access_key_id=creds["AccessKeyId"],
        aws_secret_access_key=creds["SecretAccessKey"],
        aws_session_token=creds["SessionToken"],
        config=config,
    )
    return client, creds["Expiration"]


def _item_to_pay_model(item: dict[str, Any]) -> PayModel:
    plain = {key: _deserializer.deserialize(value) for key, value in item.items()}
    return PayModel.model_validate(plain)


class DynamoDBPayModelStore:
    """DynamoDB implementation of the PayModelStore protocol."""

    def __init__(
        self,
        table: str,
        region: str = "us-east-1",
        role_arn: str | None = None,
        client: Any = None,
    ) -> None:
        self._table = table
        self._region = region
        self._role_arn = role_arn or None
        self._client = client
        self._expires_at: datetime | None = None

    def _get_client(self) -> Any:
        """Return a client, re-assuming the role shortly before expiry."""
        if self._client is not None and (
            self._expires_at is None or self._expires_at - timedelta(minutes=5) > datetime.now(tz=UTC)
        ):
            return self._client
        self._client, self._expires_at = _create_dynamodb_client(self._region, self._role_arn)
        return self._client

    # -- Read ------------------------------------------------------------------

    async def list_active(self, user: str, *, current_only: bool = False) -> list[PayModel]:
        items = await self._call(partial(self._scan, user, current_only))
        return [_item_to_pay_model(item) for item in items]

    def _scan(self, user: str, current_only: bool) -> list[dict[str, Any]]:
        """Run a filtered scan, following pagination in the same thread."""
        client = self._get_client()
        filter_expr = "#uid = :uid AND (#rs = :active OR #rs = :above)"
        names = {"#uid": "user_id", "#rs": "request_status"}
        values: dict[str, Any] = {
            ":uid": {"S": user},
            ":active": {"S": ACTIVE_REQUEST_STATUSES[0]},
            ":above": {"S": ACTIVE_REQUEST_STATUSES[1]},
        }
        if current_only:
            filter_expr += " AND #cpm = :true"
            names["#cpm"] = "current_pay_model"
            values[":true"] = {"BOOL": True}

        params: dict[str, Any] = {
            "TableName": self._table,
            "FilterExpression": filter_expr,
            "ExpressionAttributeNames": names,
            "ExpressionAttributeValues": values,
        }
        items: list[dict[str, Any]] = []
        while True:
            resp = client.scan(**params)
            items.extend(resp.get("Items", []))
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                return items
            params["ExclusiveStartKey"] = last_key

    # -- Write -----------------------------------------------------------------

    async def set_current(self, user: str, pay_model_id: str) -> None:
        records = await self.list_active(user)
        others = [self._flag_update(user, pm.id, value=False) for pm in records if pm.id != pay_model_id]
        target = self._flag_update(user, pay_model_id, value=True)
        target["Update"]["ConditionExpression"] = "attribute_exists(bmh_workspace_id)"
        await self._transact([*others, target])
        logger.info("Pay model {} is now current for user {}", pay_model_id, user)

    async def reset_current(self, user: str) -> None:
        records = await self.list_active(user)
        if not records:
            return
        await self._transact([self._flag_update(user, pm.id, value=False) for pm in records])
        logger.info("Reset current pay model for user {} ({} records)", user, len(records))

    def _flag_update(self, user: str, pay_model_id: str, *, value: bool) -> dict[str, Any]:
        return {
            "Update": {
                "TableName": self._table,
                "Key": {"user_id": {"S": user}, "bmh_workspace_id": {"S": pay_model_id}},
                "UpdateExpression": "SET #cpm = :v",
                "ExpressionAttributeNames": {"#cpm": "current_pay_model"},
                "ExpressionAttributeValues": {":v": {"BOOL": value}},
            }
        }

    async def _transact(self, actions: list[dict[str, Any]]) -> None:
        """Apply *actions* atomically.

        Users with more records than one transaction allows are written in
        chunks; the last action (the target update) always lands in the
        final chunk.
        """
        chunks = [actions[i : i + MAX_TRANSACTION_ITEMS] for i in range(0, len(actions), MAX_TRANSACTION_ITEMS)]
        if len(chunks) > 1:
            logger.warning("Pay-model update spans {} transactions; it is not atomic", len(chunks))
        for chunk in chunks:
            await self._call(partial(self._transact_sync, chunk))

    def _transact_sync(self, chunk: list[dict[str, Any]]) -> None:
        self._get_client().transact_write_items(TransactItems=chunk)

    # -- Utilities -------------------------------------------------------------

    async def _call(self, fn: partial[Any]) -> Any:
        try:
            return await to_thread.run_sync(fn)
        except (ClientError, BotoCoreError) as exc:
            logger.error("Pay-model table {} call failed: {}", self._table, exc)
            raise PayModelStoreError(str(exc)) from exc
