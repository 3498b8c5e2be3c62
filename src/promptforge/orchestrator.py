"""Fans a prompt out to many (provider, model) targets and tracks every response.

Each target runs as its own asyncio task, so a slow, failing or cancelled
target never holds up or aborts its siblings. Response records move through
``pending -> streaming -> success | error`` (or ``cancelled`` from any
non-terminal state) and are frozen once terminal.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .config import Settings
from .errors import (
    ConversationNotFoundError,
    EncryptionError,
    ErrorCode,
    LLMAdapterError,
    normalize_error,
)
from .llm import LLM, Custom
from .models import (
    ConversationEntry,
    GenerationRequest,
    ResponseRecord,
    ResponseStatus,
    TextResponse,
    split_target_key,
)
from .registry import AdapterRegistry
from .store import Store
from .streaming import ChunkStream
from .vault import Vault

logger = logging.getLogger(__name__)

Listener = Callable[[ConversationEntry], None]

CUSTOM_PROVIDER = "custom"

RETRYABLE_CODES = {
    ErrorCode.SERVICE_UNAVAILABLE,
    ErrorCode.NETWORK_ERROR,
    ErrorCode.TIMEOUT_ERROR,
}


def is_retryable(error: LLMAdapterError) -> bool:
    """Transient failures only; nothing in the 4xx range is ever retried."""
    return not error.is_client_error and error.code in RETRYABLE_CODES


class Orchestrator:
    """Owns conversation entries and their response records.

    Parameters
    ----------
    adapters : AdapterRegistry
        Provider id to adapter dispatch.
    vault : Vault
        Source of API keys; a key that is missing or cannot be decrypted
        fails only the target that needed it.
    store : Store
        Where entries and records are persisted.
    settings : Settings, optional
        Generation defaults, retry policy and persistence throttling.
    """

    def __init__(
        self,
        adapters: AdapterRegistry,
        vault: Vault,
        store: Store,
        settings: Optional[Settings] = None,
    ):
        self.adapters = adapters
        self.vault = vault
        self.store = store
        self.settings = settings or Settings()
        self.entries: Dict[str, ConversationEntry] = {}
        self._listeners: List[Listener] = []
        self._tasks: Dict[str, asyncio.Task] = {}
        self._streams: Dict[str, ChunkStream] = {}
        self._started: Dict[str, float] = {}
        self._last_flush: Dict[str, float] = {}
        self._active_runs: Dict[str, int] = {}

    # --- Observable state ---
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Calls ``listener(entry)`` after every state change.

        Returns a function that removes the listener again.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, entry: ConversationEntry) -> None:
        for listener in list(self._listeners):
            try:
                listener(entry)
            except Exception:
                logger.exception("State listener %r failed", listener)

    @property
    def history(self) -> List[ConversationEntry]:
        """Entries newest first."""
        return sorted(self.entries.values(), key=lambda e: e.timestamp, reverse=True)

    @property
    def is_submitting(self) -> bool:
        return bool(self._tasks)

    def get_entry(self, entry_id: str) -> Optional[ConversationEntry]:
        return self.entries.get(entry_id)

    def _require_entry(self, entry_id: str) -> ConversationEntry:
        entry = self.entries.get(entry_id)
        if entry is None:
            entry = self.store.load_conversation(entry_id)
            if entry is None:
                raise ConversationNotFoundError(entry_id)
            self.entries[entry.id] = entry
        return entry

    def _find_record(self, response_id: str) -> Optional[ResponseRecord]:
        for entry in self.entries.values():
            record = entry.find_response(response_id)
            if record is not None:
                return record
        return None

    # --- Targets ---
    def resolve_targets(
        self, providers: Sequence[str], models: Sequence[str]
    ) -> List[str]:
        """Expands the selection into ordered, de-duplicated ``provider:model`` keys.

        A model already prefixed with a known provider id is used as is; a
        bare model id is paired with every selected provider.
        """
        known = set(self.adapters.provider_ids()) | {CUSTOM_PROVIDER}
        targets = []
        for model in models:
            prefix = model.partition(":")[0]
            if prefix in known and ":" in model:
                targets.append(model)
            else:
                targets.extend(f"{provider}:{model}" for provider in providers)
        return list(dict.fromkeys(targets))

    # --- Dispatch ---
    async def submit_prompt(
        self,
        prompt: str,
        providers: Sequence[str],
        models: Sequence[str],
        continue_conversation: Optional[str] = None,
        user_message: Optional[str] = None,
        stream: Optional[bool] = None,
        system_prompt: Optional[str] = None,
    ) -> ConversationEntry:
        """Dispatches ``prompt`` to every target and waits for all of them to settle.

        With ``continue_conversation`` the records are appended to that entry
        instead of a new one. ``user_message`` is what the record shows as
        its prompt when ``prompt`` carries replayed context.

        Raises
        ------
        ConversationNotFoundError
            ``continue_conversation`` names an unknown entry.
        ValueError
            The selection resolves to no target.
        """
        targets = self.resolve_targets(providers, models)
        if not targets:
            raise ValueError("Select at least one model")
        if continue_conversation:
            entry = self._require_entry(continue_conversation)
        else:
            entry = ConversationEntry(
                prompt=prompt,
                providers=list(dict.fromkeys(split_target_key(t)[0] for t in targets)),
                models=targets,
            )
            self.entries[entry.id] = entry
            self.store.save_conversation(entry)
            logger.info(
                "Created conversation %s with %d targets", entry.id, len(targets)
            )
        jobs = [(target, prompt) for target in targets]
        await self._run(entry, jobs, user_message, stream, system_prompt)
        return entry

    async def send_message(
        self,
        conversation_id: str,
        target_key: str,
        message: str,
        stream: Optional[bool] = None,
    ) -> ConversationEntry:
        """Continues the conversation with one target, replaying its prior turns."""
        entry = self._require_entry(conversation_id)
        prompt = self.build_contextual_prompt(entry, target_key, message)
        await self._run(entry, [(target_key, prompt)], message, stream)
        return entry

    async def broadcast(
        self, conversation_id: str, message: str, stream: Optional[bool] = None
    ) -> ConversationEntry:
        """Sends ``message`` to every target of the entry, each with its own history."""
        entry = self._require_entry(conversation_id)
        jobs = [
            (target, self.build_contextual_prompt(entry, target, message))
            for target in entry.models
        ]
        await self._run(entry, jobs, message, stream)
        return entry

    def build_contextual_prompt(
        self, entry: ConversationEntry, target_key: str, new_message: str
    ) -> str:
        """Replays this target's successful turns oldest first, then the message."""
        blocks = []
        for record in entry.responses_for(target_key):
            if record.status is ResponseStatus.SUCCESS:
                blocks.append(f"User: {record.prompt}")
                blocks.append(f"Assistant: {record.response}")
        blocks.append(f"User: {new_message}")
        return "\n\n".join(blocks)

    async def _run(
        self,
        entry: ConversationEntry,
        jobs: Iterable[Tuple[str, str]],
        user_message: Optional[str],
        stream: Optional[bool],
        system_prompt: Optional[str] = None,
    ) -> None:
        stream = self.settings.stream if stream is None else stream
        entry.status = "pending"
        self._active_runs[entry.id] = self._active_runs.get(entry.id, 0) + 1

        planned = []
        for target, prompt in jobs:
            provider_id, model = split_target_key(target)
            record = ResponseRecord(
                conversation_id=entry.id,
                provider_id=provider_id,
                model=model,
                prompt=user_message or prompt,
            )
            entry.responses.append(record)
            self.store.save_response(record)
            request = GenerationRequest(
                model=model,
                prompt=prompt,
                stream=stream,
                system_prompt=system_prompt,
                temperature=self.settings.temperature,
                max_tokens=self.settings.max_tokens,
            )
            planned.append((record, request))
        self._notify(entry)

        tasks = []
        for record, request in planned:
            task = asyncio.create_task(
                self._dispatch(record, request), name=f"promptforge:{record.target_key}"
            )
            self._tasks[record.id] = task
            tasks.append(task)
        try:
            results = await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            self._active_runs[entry.id] -= 1
            # tasks cancelled before their first step never reach their own cleanup
            for record, _ in planned:
                self._tasks.pop(record.id, None)
        for (record, _), result in zip(planned, results):
            if isinstance(result, Exception):
                logger.error("Dispatch to %s failed: %r", record.target_key, result)

        if self._active_runs[entry.id] == 0:
            del self._active_runs[entry.id]
            entry.status = "completed"
            if entry.id in self.entries:
                self.store.save_conversation(entry)
            self._notify(entry)

    async def _dispatch(
        self, record: ResponseRecord, request: GenerationRequest
    ) -> None:
        self._started[record.id] = time.monotonic()
        try:
            adapter = self._adapter_for(record)
            api_key = self._api_key_for(adapter, record.provider_id)
            result = await self._generate(adapter, request, api_key, record)
            if isinstance(result, ChunkStream):
                await self._consume(record, result)
            else:
                self._complete(record, result)
        except asyncio.CancelledError:
            self._update(record, status=ResponseStatus.CANCELLED)
            raise
        except LLMAdapterError as exc:
            self._fail(record, exc.message, exc.code)
        except EncryptionError as exc:
            self._fail(record, str(exc), ErrorCode.ENCRYPTION_ERROR)
        except Exception as exc:
            error = normalize_error(exc, record.provider_id)
            logger.exception("Unexpected failure dispatching to %s", record.target_key)
            self._fail(record, error.message, error.code)
        finally:
            self._tasks.pop(record.id, None)
            self._streams.pop(record.id, None)
            self._started.pop(record.id, None)
            self._last_flush.pop(record.id, None)

    def _adapter_for(self, record: ResponseRecord) -> LLM:
        if record.provider_id != CUSTOM_PROVIDER:
            return self.adapters.get_adapter(record.provider_id)
        custom = self.store.get_custom_model(record.model)
        if custom is None:
            raise LLMAdapterError(
                f"Custom model {record.model} not found", ErrorCode.MODEL_NOT_FOUND
            )
        return Custom(
            custom,
            api_key=self.vault.get_api_key(custom.secret_name),
            timeout=self.settings.request_timeout,
        )

    def _api_key_for(self, adapter: LLM, provider_id: str) -> Optional[str]:
        if not adapter.requires_api_key or isinstance(adapter, Custom):
            return None
        api_key = self.vault.get_api_key(provider_id)
        if not api_key:
            raise LLMAdapterError(
                f"No API key configured for {provider_id}",
                ErrorCode.MISSING_API_KEY,
                401,
            )
        return api_key

    async def _generate(
        self,
        adapter: LLM,
        request: GenerationRequest,
        api_key: Optional[str],
        record: ResponseRecord,
    ) -> Union[TextResponse, ChunkStream]:
        attempt = 0
        while True:
            try:
                return await adapter.generate_text(request.prompt, request, api_key)
            except LLMAdapterError as exc:
                if attempt >= self.settings.retry_attempts or not is_retryable(exc):
                    raise
                attempt += 1
                logger.warning(
                    "Retrying %s (attempt %d of %d) after %s",
                    record.target_key,
                    attempt,
                    self.settings.retry_attempts,
                    exc.code.value,
                )
                await asyncio.sleep(self.settings.retry_delay)

    async def _consume(self, record: ResponseRecord, stream: ChunkStream) -> None:
        self._streams[record.id] = stream
        self._update(record, status=ResponseStatus.STREAMING)
        async for chunk in stream:
            if record.is_terminal:
                break
            if not chunk.is_complete:
                self._update(record, response=record.response + chunk.content)
                continue
            metadata = chunk.metadata
            self._update(
                record,
                status=ResponseStatus.SUCCESS,
                usage=metadata.usage if metadata else None,
                finish_reason=metadata.finish_reason if metadata else None,
            )
        if not record.is_terminal:
            self._update(record, status=ResponseStatus.CANCELLED)

    def _complete(self, record: ResponseRecord, response: TextResponse) -> None:
        metadata = response.metadata
        self._update(
            record,
            response=response.content,
            status=ResponseStatus.SUCCESS,
            usage=metadata.usage if metadata else None,
            finish_reason=metadata.finish_reason if metadata else None,
        )

    def _fail(self, record: ResponseRecord, message: str, code: ErrorCode) -> None:
        logger.info("Target %s failed with %s", record.target_key, code.value)
        self._update(
            record, status=ResponseStatus.ERROR, error=message, error_code=code.value
        )

    def _update(self, record: ResponseRecord, **changes) -> bool:
        """Applies changes to a non-terminal record; terminal records never change."""
        if record.is_terminal:
            logger.debug("Ignoring update to terminal record %s", record.id)
            return False
        for name, value in changes.items():
            setattr(record, name, value)
        if record.is_terminal:
            started = self._started.get(record.id)
            if started is not None:
                record.duration = time.monotonic() - started
            self._persist(record)
        else:
            self._persist(record, throttle=True)
        entry = self.entries.get(record.conversation_id)
        if entry is not None:
            self._notify(entry)
        return True

    def _persist(self, record: ResponseRecord, throttle: bool = False) -> None:
        now = time.monotonic()
        if throttle:
            last = self._last_flush.get(record.id)
            if last is not None and now - last < self.settings.flush_interval:
                return
        self._last_flush[record.id] = now
        if record.conversation_id in self.entries:
            self.store.save_response(record)

    # --- Management ---
    def cancel_response(self, response_id: str) -> bool:
        """Cancels one in-flight response. Returns False if it already settled."""
        record = self._find_record(response_id)
        if record is None or record.is_terminal:
            return False
        stream = self._streams.get(response_id)
        if stream is not None:
            stream.cancel()
        self._update(record, status=ResponseStatus.CANCELLED)
        task = self._tasks.get(response_id)
        if task is not None and not task.done():
            task.cancel()
        logger.info("Cancelled response %s for %s", response_id, record.target_key)
        return True

    def _cancel_entry(self, entry: ConversationEntry) -> None:
        for record in entry.responses:
            if not record.is_terminal:
                self.cancel_response(record.id)

    def clear_history(self) -> None:
        """Cancels what is in flight and forgets every entry in memory.

        Stored conversations are untouched.
        """
        for entry in list(self.entries.values()):
            self._cancel_entry(entry)
        self.entries.clear()

    def delete_entry(self, entry_id: str) -> bool:
        """Removes an entry from memory and storage."""
        entry = self.entries.get(entry_id)
        if entry is not None:
            self._cancel_entry(entry)
            del self.entries[entry_id]
        removed = self.store.delete_conversation(entry_id)
        return removed or entry is not None

    def load_history(
        self, limit: Optional[int] = None, offset: int = 0
    ) -> List[ConversationEntry]:
        """Loads stored entries into memory, leaving in-flight entries alone."""
        limit = self.settings.history_limit if limit is None else limit
        for stored in self.store.list_conversations(limit=limit, offset=offset):
            if stored.id not in self._active_runs:
                self.entries[stored.id] = stored
        return self.history
