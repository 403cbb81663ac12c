"""Streaming completions from Anthropic models on AWS Bedrock."""

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import boto3

from duckdb_mcp.config import BedrockConfig
from duckdb_mcp.llm.stream import collect_completion

logger = logging.getLogger(__name__)

_END = object()


class BedrockStreamer:
    """Sends a message list to Bedrock and yields the raw response-stream events.

    The boto3 event stream is blocking, so each event is pulled in a worker
    thread; the caller suspends on every event and the loop stays free.
    """

    def __init__(self, config: BedrockConfig, client: Any | None = None) -> None:
        self.config = config
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = boto3.client(
                "bedrock-runtime",
                region_name=self.config.region,
                endpoint_url=self.config.endpoint,
            )
        return self._client

    def build_body(self, messages: list[dict[str, Any]], max_tokens: int | None = None) -> dict:
        """Anthropic messages request body for invoke_model_with_response_stream."""
        return {
            "messages": messages,
            "anthropic_version": self.config.anthropic_version,
            "max_tokens": max_tokens or self.config.max_tokens,
        }

    async def stream(
        self, messages: list[dict[str, Any]], max_tokens: int | None = None
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield response-stream events in arrival order.

        Raises:
            botocore.exceptions.ClientError: If the request is rejected
            botocore.exceptions.EventStreamError: If the stream fails mid-way
        """
        body = self.build_body(messages, max_tokens)
        logger.debug(f"Invoking {self.config.model_identifier} (max_tokens={body['max_tokens']})")

        response = await asyncio.to_thread(
            self.client.invoke_model_with_response_stream,
            modelId=self.config.model_identifier,
            contentType="application/json",
            accept="application/json",
            body=json.dumps(body),
        )

        events = iter(response["body"])
        while True:
            event = await asyncio.to_thread(next, events, _END)
            if event is _END:
                break
            yield event

    async def complete(self, messages: list[dict[str, Any]], max_tokens: int | None = None) -> str:
        """Stream a completion and return the assembled text."""
        try:
            return await collect_completion(self.stream(messages, max_tokens))
        except Exception as e:
            logger.error(f"Error calling Bedrock: {e}")
            raise
