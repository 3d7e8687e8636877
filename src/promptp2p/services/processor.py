"""
promptp2p/services/processor.py

Processor service: answers processRequest on the "processor" topic by
sending the prompt to a text generation backend.

The default backend is an Ollama server (POST /api/generate). Any object
with an async generate(prompt) -> str method can stand in for it.
Failures are returned as {error: True, message} dicts.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from ..config import PROCESSOR_METHOD, ProcessorConfig
from ..gateway.service import ServiceWorker
from ..metrics import GatewayMetrics

logger = logging.getLogger("promptp2p.services.processor")


class GenerationError(Exception):
    """The generation backend could not produce a response."""
    pass


class OllamaGenerator:
    """
    Text generation through Ollama.

    Usage:
        async with httpx.AsyncClient() as http_client:
            generator = OllamaGenerator(http_client, "http://localhost:11434", "llama3")
            text = await generator.generate("Hello")
    """

    def __init__(self, http_client: httpx.AsyncClient, base_url: str, model: str, timeout: float = 30.0):
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout

    async def generate(self, prompt: str) -> str:
        url = f"{self.base_url}/api/generate"
        try:
            response = await self.http_client.post(
                url,
                json={"model": self.model, "prompt": prompt, "stream": False},
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise GenerationError(f"Ollama request timeout ({self.timeout:g}s)") from e
        except httpx.ConnectError as e:
            raise GenerationError(f"Cannot connect to Ollama - make sure it's running on {self.base_url}") from e

        if response.status_code != 200:
            raise GenerationError(f"Ollama API error: {response.status_code} {response.reason_phrase}")

        text = response.json().get("response")
        if not isinstance(text, str):
            raise GenerationError("Invalid response from Ollama: missing response field")
        return text.strip()


async def process_request(worker, data: Any) -> Dict[str, Any]:
    """Generate a response for {prompt}."""
    request_id = uuid.uuid4().hex[:9]

    try:
        prompt = data.get("prompt") if isinstance(data, dict) else None
        if not isinstance(prompt, str):
            raise ValueError("Invalid input: expected { prompt: string }")

        logger.info(f"[{request_id}] Generating response: promptLength={len(prompt)}")
        text = await worker.generator.generate(prompt)
        logger.info(f"[{request_id}] Response generated: responseLength={len(text)}")

        return {
            "prompt": prompt,
            "response": text,
            "processed_at": datetime.now(timezone.utc).isoformat(),
            "requestId": request_id,
        }

    except Exception as e:
        logger.error(f"[{request_id}] Error processing request: {type(e).__name__}: {e}")
        return {"error": True, "message": str(e), "requestId": request_id}


class ProcessorWorker(ServiceWorker):
    """
    Serves processRequest on the processor topic.

    Usage:
        async with httpx.AsyncClient() as http_client:
            generator = OllamaGenerator(http_client, config.ollama_url, config.model)
            worker = ProcessorWorker(transport, generator, config=config)
            await worker.start()
    """

    HANDLERS = {PROCESSOR_METHOD: process_request}

    def __init__(
        self,
        transport,
        generator,
        config: Optional[ProcessorConfig] = None,
        metrics: Optional[GatewayMetrics] = None,
    ):
        super().__init__(transport, config or ProcessorConfig(), metrics=metrics)
        self.generator = generator
