from __future__ import annotations

from typing import Any, cast

from botocore.exceptions import BotoCoreError, ClientError
from starlette.concurrency import run_in_threadpool

from .archive_queue import QueueError, QueueMessage

# SQS hard limits.
_MAX_BATCH = 10
_MAX_WAIT_SECONDS = 20
_MAX_VISIBILITY_SECONDS = 12 * 60 * 60


class SqsArchiveQueue:
    def __init__(
        self,
        *,
        queue_name: str,
        queue_url: str = "",
        endpoint_url: str = "",
        region: str = "",
        visibility_timeout_seconds: int = 120,
    ) -> None:
        self._queue_name = queue_name
        self._queue_url = queue_url.strip()
        self._visibility_timeout = int(visibility_timeout_seconds)

        import boto3

        self._client = boto3.client(
            "sqs",
            endpoint_url=endpoint_url or None,
            region_name=region or None,
        )

    async def _call(self, fn: Any, what: str) -> Any:
        try:
            return await run_in_threadpool(fn)
        except (ClientError, BotoCoreError) as exc:
            raise QueueError(f"sqs {what} failed") from exc

    async def ensure_exists(self) -> None:
        if self._queue_url:
            return

        def _create() -> str:
            # CreateQueue is idempotent for identical attributes.
            resp = self._client.create_queue(
                QueueName=self._queue_name,
                Attributes={"VisibilityTimeout": str(self._visibility_timeout)},
            )
            return cast(str, resp["QueueUrl"])

        self._queue_url = await self._call(_create, "create queue")

    async def _url(self) -> str:
        if not self._queue_url:
            await self.ensure_exists()
        return self._queue_url

    async def send(self, body: str) -> None:
        url = await self._url()
        await self._call(
            lambda: self._client.send_message(QueueUrl=url, MessageBody=body), "send message"
        )

    async def receive(self, *, max_messages: int, wait_seconds: float) -> list[QueueMessage]:
        url = await self._url()

        def _receive() -> list[QueueMessage]:
            resp = self._client.receive_message(
                QueueUrl=url,
                MaxNumberOfMessages=max(1, min(int(max_messages), _MAX_BATCH)),
                WaitTimeSeconds=max(0, min(int(wait_seconds), _MAX_WAIT_SECONDS)),
                VisibilityTimeout=self._visibility_timeout,
                AttributeNames=["ApproximateReceiveCount"],
            )
            out: list[QueueMessage] = []
            for msg in cast(list[dict[str, Any]], resp.get("Messages") or []):
                attrs = cast(dict[str, str], msg.get("Attributes") or {})
                out.append(
                    QueueMessage(
                        body=cast(str, msg.get("Body") or ""),
                        receipt=cast(str, msg["ReceiptHandle"]),
                        receive_count=int(attrs.get("ApproximateReceiveCount") or 1),
                    )
                )
            return out

        return await self._call(_receive, "receive messages")

    async def ack(self, message: QueueMessage) -> None:
        url = await self._url()
        await self._call(
            lambda: self._client.delete_message(QueueUrl=url, ReceiptHandle=message.receipt),
            "delete message",
        )

    async def release(self, message: QueueMessage, *, delay_seconds: int = 0) -> None:
        url = await self._url()
        timeout = max(0, min(int(delay_seconds), _MAX_VISIBILITY_SECONDS))
        await self._call(
            lambda: self._client.change_message_visibility(
                QueueUrl=url, ReceiptHandle=message.receipt, VisibilityTimeout=timeout
            ),
            "release message",
        )
