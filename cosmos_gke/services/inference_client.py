"""
Client for the deployed Cosmos inference endpoint.

Only used to smoke-test a deployment: a health probe and a single
text-to-world prediction whose base64 output is decoded to a file.
"""

import base64
import logging
from pathlib import Path
from typing import Any, Optional

import httpx
from pydantic import BaseModel, Field

from ..exceptions import CosmosGKEError

logger = logging.getLogger(__name__)

PREDICT_TIMEOUT = 1800.0


class GenerationParameters(BaseModel):
    """Generation parameters sent with a prediction request."""

    guidance: float = Field(default=7.0, description="Classifier-free guidance scale")
    num_steps: int = Field(default=35, ge=1, description="Diffusion step count")
    height: int = Field(default=704, ge=1)
    width: int = Field(default=1280, ge=1)
    num_video_frames: int = Field(default=121, ge=1)
    seed: int = Field(default=1)


class InferenceError(CosmosGKEError):
    """The inference endpoint rejected a request or returned no output."""


class InferenceClient:
    """HTTP client for the Cosmos inference service."""

    def __init__(
        self,
        base_url: str,
        timeout: float = PREDICT_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize the inference client."""
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.Client] = None

    @property
    def client(self) -> httpx.Client:
        """Get HTTP client for the inference API."""
        if self._client is None:
            self._client = httpx.Client(
                base_url=self.base_url,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> "InferenceClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def health(self) -> bool:
        """Check if the inference server is healthy."""
        try:
            response = self.client.get("/health")
            return response.is_success
        except httpx.HTTPError as e:
            logger.error(f"Inference health check failed: {e}")
            return False

    def predict(self, prompt: str, parameters: Optional[GenerationParameters] = None) -> bytes:
        """
        Run one prediction and return the decoded output bytes.

        Raises:
            InferenceError: HTTP failure or a response without output.
        """
        parameters = parameters or GenerationParameters()
        body = {
            "instances": [{"text": prompt}],
            "parameters": parameters.model_dump(),
        }
        try:
            response = self.client.post("/predict", json=body)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise InferenceError(f"Prediction request failed: {e}") from e

        predictions: list[Any] = response.json().get("predictions") or []
        if not predictions:
            raise InferenceError("Prediction response contained no predictions")

        output = predictions[0]
        if isinstance(output, dict):
            output = output.get("output")
        if not isinstance(output, str) or not output:
            raise InferenceError("Prediction response contained no output")
        return base64.b64decode(output)

    def predict_to_file(
        self,
        prompt: str,
        path: Path,
        parameters: Optional[GenerationParameters] = None,
    ) -> int:
        """Run one prediction, write the output to ``path`` and return its size."""
        data = self.predict(prompt, parameters)
        path.write_bytes(data)
        logger.info(f"Wrote {len(data)} bytes to {path}")
        return len(data)
