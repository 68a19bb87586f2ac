# companion/llm_client.py
import asyncio
import logging
import time
import traceback
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Any, Callable, Dict, Optional, TypeVar

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_google_vertexai import ChatVertexAI
from openai import OpenAI

from companion.exceptions import ProcessingFailed

T = TypeVar("T")

logger = logging.getLogger("companion")


def is_openai_model(model_name) -> bool:
    prefixes = ("gpt-", "gpt4", "gpt-4", "gpt-5", "o1", "o3", "o4")
    return any(model_name.startswith(p) for p in prefixes)


def _is_timeout_error(e: BaseException) -> bool:
    if isinstance(e, (asyncio.TimeoutError, FutureTimeoutError, TimeoutError)):
        return True
    msg = repr(e)
    return "TimeoutError" in msg or "timed out" in msg.lower()


def _is_resource_exhausted_error(e: BaseException) -> bool:
    msg = str(e)
    return (
        "429" in msg
        and (
            "RESOURCE_EXHAUSTED" in msg
            or "Resource has been exhausted" in msg
            or "Too Many Requests" in msg
        )
    )


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry number `attempt` (1-based): base, 2*base, 4*base, ..."""
    return min(base_delay * (2 ** (attempt - 1)), max_delay)


def _run_time_boxed(fn: Callable[[], T], timeout: Optional[float]) -> T:
    if not timeout:
        return fn()
    # the worker is abandoned on timeout; the client-level timeout eventually frees it
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="llm-attempt")
    try:
        future = executor.submit(fn)
        return future.result(timeout=timeout)
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


def call_with_retries_sync(
    fn: Callable[[], T],
    *,
    attempts: int = 5,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    attempt_timeout: Optional[float] = None,
    log: Callable[[str], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "LLM call",
) -> T:
    """
    Run `fn` until it returns, at most `attempts` times.

    Each attempt is time-boxed by `attempt_timeout`. Between attempts the delay
    doubles starting from `base_delay`. When every attempt has failed,
    ProcessingFailed is raised from the last error.
    """
    attempts = max(1, attempts)
    last_exception: BaseException | None = None

    for attempt in range(1, attempts + 1):
        start_time = time.monotonic()
        try:
            return _run_time_boxed(fn, attempt_timeout)
        except Exception as e:
            elapsed = time.monotonic() - start_time
            last_exception = e

            if _is_timeout_error(e):
                msg = f"{label}: attempt {attempt}/{attempts} timed out"
            elif _is_resource_exhausted_error(e):
                msg = f"{label}: attempt {attempt}/{attempts} got 429"
            else:
                msg = f"{label}: attempt {attempt}/{attempts} failed"

            if log:
                log(f"{msg} (elapsed={elapsed:.2f}s): {e!r}")
            logger.debug(traceback.format_exc())

            if attempt < attempts:
                sleep(backoff_delay(attempt, base_delay, max_delay))

    raise ProcessingFailed(
        f"{label} failed after {attempts} attempts: {last_exception}",
        attempts=attempts,
    ) from last_exception


class LlmClient:
    """
    Single-shot text-in/text-out wrapper:

        text = llm.invoke("some prompt", system="...")

    Under the hood:
    - Vertex: ChatVertexAI.invoke([SystemMessage, HumanMessage]) in JSON mode
    - OpenAI: Responses API (client.responses.create) with a json_object format

    Retries are left to the caller (see call_with_retries_sync).
    """

    def __init__(
        self,
        model_name: str,
        *,
        vertex_project: str,
        vertex_region: str,
        timeout: float | None = None,
        json_mode: bool = True,
    ):
        self.provider = "openai" if is_openai_model(model_name) else "vertex"
        self.model_name = model_name
        self._timeout = timeout
        self.last_usage: Optional[Dict[str, int]] = None

        if self.provider == "vertex":
            vertex_kwargs: Dict[str, Any] = {
                "project": vertex_project,
                "location": vertex_region,
                "model_name": model_name,
                "timeout": timeout,
                "max_retries": 0,
            }
            if json_mode:
                vertex_kwargs["response_mime_type"] = "application/json"
            self._vertex = ChatVertexAI(**vertex_kwargs)
            self._client = None
            self._openai_params: Dict[str, Any] = {}
        else:
            self._vertex = None
            client_kwargs: Dict[str, Any] = {"max_retries": 0}
            if timeout is not None:
                client_kwargs["timeout"] = timeout
            self._client = OpenAI(**client_kwargs)
            self._openai_params = {"text": {"format": {"type": "json_object"}}} if json_mode else {}

    def _merge_usage(self, inc: Dict[str, int]) -> None:
        if self.last_usage is None:
            self.last_usage = dict(inc)
            return
        for k, v in inc.items():
            self.last_usage[k] = (self.last_usage.get(k, 0) or 0) + (v or 0)

    def invoke(self, prompt: str, *, system: str | None = None) -> str:
        """
        Single HTTP call without retries/backoff.
        """
        if self.provider == "vertex":
            messages = []
            if system:
                messages.append(SystemMessage(content=system))
            messages.append(HumanMessage(content=prompt))
            resp = self._vertex.invoke(messages)

            usage_md = getattr(resp, "usage_metadata", None)
            if isinstance(usage_md, dict):
                self._merge_usage({
                    "prompt_token_count": int(usage_md.get("input_tokens", 0) or 0),
                    "candidates_token_count": int(usage_md.get("output_tokens", 0) or 0),
                    "total_token_count": int(usage_md.get("total_tokens", 0) or 0),
                })

            if isinstance(resp, str):
                return resp
            return str(getattr(resp, "content", resp))

        params = dict(self._openai_params)
        if system:
            params["instructions"] = system
        resp = self._client.responses.create(
            model=self.model_name,
            input=prompt,
            **params,
        )
        usage = getattr(resp, "usage", None)
        if usage is not None:
            self._merge_usage({
                "prompt_token_count": getattr(usage, "input_tokens", 0) or 0,
                "candidates_token_count": getattr(usage, "output_tokens", 0) or 0,
                "total_token_count": getattr(usage, "total_tokens", 0) or 0,
            })

        text = getattr(resp, "output_text", "") or ""
        return text.strip()


def build_llm(model_name: str, *, vertex_project: str, vertex_region: str, timeout: float | None = None):
    """
    Build the default client. Falls back to None if the provider SDK cannot be
    initialized (missing credentials), in which case AI processing is reported
    as failed per update instead of breaking the app at startup.
    """
    try:
        return LlmClient(
            model_name=model_name,
            vertex_project=vertex_project,
            vertex_region=vertex_region,
            timeout=timeout,
        )
    except Exception as e:
        logger.warning(f"Could not initialize LLM client for '{model_name}': {e}")
        return None
