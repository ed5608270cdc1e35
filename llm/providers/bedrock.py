"""
AWS Bedrock LLM Provider.
"""

import asyncio
import json
import logging
import time
from typing import Any, Dict, Iterator, List

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from core.errors import UpstreamUnavailable
from core.metrics import record_llm_latency
from ..client import to_chat_messages
from ..generation_config import GenerationConfig

logger = logging.getLogger(__name__)


class BedrockProvider:
    """
    AWS Bedrock LLM provider.

    Supports Claude models via Bedrock.
    """

    DEFAULT_MODEL = "us.anthropic.claude-sonnet-4-20250514-v1:0"

    def __init__(
        self,
        model_id: str = DEFAULT_MODEL,
        region: str = "us-east-1",
    ):
        """
        Initialize Bedrock provider.

        Args:
            model_id: Bedrock model ID
            region: AWS region
        """
        self.model_id = model_id
        self.region = region

        self._client = boto3.client("bedrock-runtime", region_name=region)
        logger.info(f"Bedrock provider initialized: {model_id} in {region}")

    @staticmethod
    def _messages(payload: List[Dict[str, str]]) -> List[Dict[str, Any]]:
        """Chat messages with adjacent same-role turns merged (roles must alternate)."""
        messages: List[Dict[str, Any]] = []
        for msg in to_chat_messages(payload):
            block = {"type": "text", "text": msg["content"]}
            if messages and messages[-1]["role"] == msg["role"]:
                messages[-1]["content"].append(block)
            else:
                messages.append({"role": msg["role"], "content": [block]})
        return messages

    def _body(self, payload: List[Dict[str, str]], config: GenerationConfig) -> str:
        body: Dict[str, Any] = {
            "anthropic_version": "bedrock-2023-05-31",
            "max_tokens": config.max_output_tokens,
            "temperature": config.temperature,
            "messages": self._messages(payload),
        }
        if config.top_k is not None:
            body["top_k"] = config.top_k
        return json.dumps(body)

    def _generate_sync(self, payload: List[Dict[str, str]], config: GenerationConfig) -> str:
        try:
            response = self._client.invoke_model(
                modelId=self.model_id,
                body=self._body(payload, config),
                contentType="application/json",
                accept="application/json",
            )

            response_body = json.loads(response["body"].read())

            if "content" in response_body and response_body["content"]:
                return response_body["content"][0]["text"].strip()

            logger.warning("Empty response from Bedrock")
            return ""

        except (ClientError, BotoCoreError) as e:
            logger.error(f"Bedrock API error: {e}")
            raise UpstreamUnavailable(f"Bedrock API error: {e}") from e

    async def generate(self, payload: List[Dict[str, str]], config: GenerationConfig) -> str:
        """
        Generate a response for an optimized payload.

        Bedrock has no native async client, so the call runs in a thread.
        """
        start = time.time()
        text = await asyncio.to_thread(self._generate_sync, payload, config)
        record_llm_latency("bedrock", time.time() - start)
        return text

    def generate_stream(
        self, payload: List[Dict[str, str]], config: GenerationConfig
    ) -> Iterator[str]:
        """Yield response text chunks as they arrive."""
        try:
            response = self._client.invoke_model_with_response_stream(
                modelId=self.model_id,
                body=self._body(payload, config),
                contentType="application/json",
                accept="application/json",
            )
            for event in response["body"]:
                chunk = json.loads(event["chunk"]["bytes"])
                if chunk.get("type") == "content_block_delta":
                    text = chunk.get("delta", {}).get("text")
                    if text:
                        yield text
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Bedrock streaming failed: {e}")
            raise UpstreamUnavailable(f"Bedrock streaming failed: {e}") from e
