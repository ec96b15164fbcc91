"""Prompt hook collaborator: send an assembled hook prompt to a chat model."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any, Protocol

from agentguard.core.errors import ProcessCancelledError

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel


class PromptRunner(Protocol):
    """Anything that can answer a hook prompt."""

    def run(
        self,
        prompt: str,
        model: str | None = None,
        timeout_ms: int | None = None,
        cancel: threading.Event | None = None,
    ) -> str: ...


def message_text(content: Any) -> str:
    """Flatten a chat message's content (str or list of blocks) to text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return str(content)


class ChatModelPromptRunner:
    """PromptRunner backed by LangChain's ``init_chat_model``.

    The call runs on a daemon thread so a timeout or cancel can abandon it;
    the model call itself cannot be interrupted.
    """

    def __init__(self, default_model: str):
        self.default_model = default_model
        self._models: dict[str, BaseChatModel] = {}
        self._lock = threading.Lock()

    def _get_model(self, name: str) -> BaseChatModel:
        from langchain.chat_models import init_chat_model

        with self._lock:
            if name not in self._models:
                self._models[name] = init_chat_model(name)
            return self._models[name]

    def run(
        self,
        prompt: str,
        model: str | None = None,
        timeout_ms: int | None = None,
        cancel: threading.Event | None = None,
    ) -> str:
        chat = self._get_model(model or self.default_model)
        output: list[str] = []
        errors: list[BaseException] = []
        done = threading.Event()

        def _run():
            try:
                output.append(message_text(chat.invoke(prompt).content))
            except Exception as e:
                errors.append(e)
            finally:
                done.set()

        threading.Thread(target=_run, daemon=True).start()

        deadline = timeout_ms / 1000 if timeout_ms else None
        waited = 0.0
        while not done.wait(0.05):
            waited += 0.05
            if cancel is not None and cancel.is_set():
                raise ProcessCancelledError("prompt hook cancelled")
            if deadline is not None and waited >= deadline:
                raise TimeoutError(f"prompt hook timed out after {timeout_ms}ms")
        if errors:
            raise errors[0]
        return output[0]
