"""Relay of a streamed chat completion from the upstream LLM to the client.

One relay per in-flight message request. The user's message is persisted by
the caller before the relay starts; the assistant's reply is written only
after the upstream stream finishes, so a failed stream leaves no assistant
row behind.
"""
import json
import logging
import time
from datetime import datetime, timezone
from typing import AsyncIterator, Iterable, List

import httpx
import sentry_sdk
from openai import AsyncOpenAI, OpenAIError
from prometheus_client import Counter, Histogram
from sqlalchemy.orm import sessionmaker
from starlette.concurrency import run_in_threadpool

from schoolchat.core.config import Settings
from schoolchat.models.conversation import Chat, Message, MessageRole

logger = logging.getLogger(__name__)

UPSTREAM_ERROR = "AI service temporarily unavailable"
TEMPERATURE = 0.7
TITLE_LENGTH = 50

RELAY_COMPLETIONS = Counter(
    "chat_relay_completions_total",
    "Completed relayed chat completions",
    ["model"],
)
RELAY_FAILURES = Counter(
    "chat_relay_failures_total",
    "Relayed chat completions that ended with an error frame",
    ["model"],
)
RELAY_TOKENS = Counter(
    "chat_relay_tokens_total",
    "Tokens accounted for relayed completions",
    ["model", "kind"],
)
RELAY_LATENCY = Histogram(
    "chat_relay_latency_seconds",
    "Wall time of a relayed completion, first byte to done",
)


def build_client(settings: Settings) -> AsyncOpenAI:
    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY is not set; chat completions will fail upstream")
    return AsyncOpenAI(
        api_key=settings.openai_api_key or "",
        base_url=settings.openai_base_url,
    )


def frame(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def title_from(content: str) -> str:
    if len(content) > TITLE_LENGTH:
        return content[:TITLE_LENGTH] + "..."
    return content


def history_payload(messages: Iterable[Message]) -> List[dict]:
    return [{"role": m.role.value.lower(), "content": m.content} for m in messages]


class CompletionRelay:

    def __init__(self, client: AsyncOpenAI, session_factory: sessionmaker, chat_id: int, model: str):
        self.client = client
        self.session_factory = session_factory
        self.chat_id = chat_id
        self.model = model

    async def frames(self, history: List[dict]) -> AsyncIterator[str]:
        started = time.monotonic()
        parts: List[str] = []
        usage = None
        try:
            stream = await self.client.chat.completions.create(
                model=self.model,
                messages=history,
                stream=True,
                temperature=TEMPERATURE,
                stream_options={"include_usage": True},
            )
            async for chunk in stream:
                if getattr(chunk, "usage", None) is not None:
                    usage = chunk.usage
                if not chunk.choices:
                    continue
                content = chunk.choices[0].delta.content or ""
                if not content:
                    continue
                parts.append(content)
                yield frame({"content": content, "done": False})
        except (OpenAIError, httpx.HTTPError) as e:
            yield self._failed("Upstream completion failed", e)
            return
        except Exception as e:
            # malformed events from a gateway, read timeouts and the like
            yield self._failed("Upstream stream broke unexpectedly", e)
            return

        try:
            await run_in_threadpool(self._persist, "".join(parts), usage)
        except Exception as e:
            yield self._failed("Failed to store assistant reply", e)
            return
        RELAY_LATENCY.observe(time.monotonic() - started)
        yield frame({"content": "", "done": True})

    def _failed(self, message: str, exc: Exception) -> str:
        RELAY_FAILURES.labels(model=self.model).inc()
        sentry_sdk.capture_exception(exc)
        logger.error(message, exc_info=exc, extra={"chat_id": self.chat_id, "model": self.model})
        return frame({"error": UPSTREAM_ERROR})

    def _persist(self, text: str, usage) -> None:
        prompt = getattr(usage, "prompt_tokens", 0) or 0
        completion = getattr(usage, "completion_tokens", 0) or 0
        total = getattr(usage, "total_tokens", 0) or (prompt + completion)

        db = self.session_factory()
        try:
            chat = db.get(Chat, self.chat_id)
            if chat is None:
                logger.warning("Chat deleted while streaming; reply dropped", extra={"chat_id": self.chat_id})
                return
            chat.updated_at = datetime.now(timezone.utc)
            db.add(Message(
                chat_id=self.chat_id,
                role=MessageRole.ASSISTANT,
                content=text,
                model=self.model,
                prompt_tokens=prompt,
                completion_tokens=completion,
                total_tokens=total,
            ))
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        RELAY_COMPLETIONS.labels(model=self.model).inc()
        RELAY_TOKENS.labels(model=self.model, kind="prompt").inc(prompt)
        RELAY_TOKENS.labels(model=self.model, kind="completion").inc(completion)
        logger.info(
            "Assistant reply stored",
            extra={"chat_id": self.chat_id, "model": self.model, "total_tokens": total},
        )
