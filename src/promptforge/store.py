"""Concrete implementations for the storage pillar."""

import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Union

from .models import ConversationEntry, CustomModel, EncryptedSecret, ResponseRecord


class Store(ABC):
    """Interface for persisting secrets, conversations and custom endpoints.

    Every method is synchronous. Records are keyed by id, so writes from
    concurrent dispatch tasks never touch the same row.
    """

    # --- API keys ---
    @abstractmethod
    def store_api_key(self, secret: EncryptedSecret) -> None:
        """Inserts or replaces the secret for ``secret.provider_name``."""
        pass

    @abstractmethod
    def get_api_key(self, provider_name: str) -> Optional[EncryptedSecret]:
        pass

    @abstractmethod
    def get_all_api_keys(self) -> List[EncryptedSecret]:
        pass

    @abstractmethod
    def delete_api_key(self, provider_name: str) -> bool:
        """Returns whether a secret was removed."""
        pass

    @abstractmethod
    def update_api_key_last_used(
        self, provider_name: str, when: Optional[datetime] = None
    ) -> None:
        pass

    # --- Conversations ---
    @abstractmethod
    def save_conversation(self, entry: ConversationEntry) -> None:
        """Saves the entry and every response it currently holds."""
        pass

    @abstractmethod
    def save_response(self, record: ResponseRecord) -> None:
        """Inserts or replaces a single response record."""
        pass

    @abstractmethod
    def load_conversation(self, conversation_id: str) -> Optional[ConversationEntry]:
        """Loads an entry with its responses in chronological order."""
        pass

    @abstractmethod
    def list_conversations(
        self, limit: int = 50, offset: int = 0
    ) -> List[ConversationEntry]:
        """Lists entries newest first."""
        pass

    @abstractmethod
    def delete_conversation(self, conversation_id: str) -> bool:
        pass

    # --- Custom models ---
    @abstractmethod
    def save_custom_model(self, model: CustomModel) -> None:
        pass

    @abstractmethod
    def get_custom_model(self, model_id: str) -> Optional[CustomModel]:
        pass

    @abstractmethod
    def list_custom_models(self) -> List[CustomModel]:
        pass

    @abstractmethod
    def delete_custom_model(self, model_id: str) -> bool:
        pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


_UPSERT_RESPONSE = (
    "INSERT OR REPLACE INTO responses "
    "(id, conversation_id, timestamp, payload_json) VALUES (?, ?, ?, ?)"
)


class InMemory(Store):
    """Keeps deep copies of everything in dictionaries."""

    def __init__(self):
        self._secrets: Dict[str, EncryptedSecret] = {}
        self._entries: Dict[str, ConversationEntry] = {}
        self._responses: Dict[str, ResponseRecord] = {}
        self._custom_models: Dict[str, CustomModel] = {}

    def store_api_key(self, secret):
        self._secrets[secret.provider_name] = secret.model_copy(deep=True)

    def get_api_key(self, provider_name):
        secret = self._secrets.get(provider_name)
        return secret.model_copy(deep=True) if secret else None

    def get_all_api_keys(self):
        return [s.model_copy(deep=True) for s in self._secrets.values()]

    def delete_api_key(self, provider_name):
        return self._secrets.pop(provider_name, None) is not None

    def update_api_key_last_used(self, provider_name, when=None):
        secret = self._secrets.get(provider_name)
        if secret is not None:
            self._secrets[provider_name] = secret.model_copy(
                update={"last_used": when or _utcnow()}
            )

    def save_conversation(self, entry):
        self._entries[entry.id] = entry.model_copy(update={"responses": []}, deep=True)
        for record in entry.responses:
            self.save_response(record)

    def save_response(self, record):
        self._responses[record.id] = record.model_copy(deep=True)

    def load_conversation(self, conversation_id):
        entry = self._entries.get(conversation_id)
        if entry is None:
            return None
        responses = sorted(
            (
                r.model_copy(deep=True)
                for r in self._responses.values()
                if r.conversation_id == conversation_id
            ),
            key=lambda r: r.timestamp,
        )
        return entry.model_copy(update={"responses": responses}, deep=True)

    def list_conversations(self, limit=50, offset=0):
        newest = sorted(self._entries.values(), key=lambda e: e.timestamp, reverse=True)
        return [self.load_conversation(e.id) for e in newest[offset : offset + limit]]

    def delete_conversation(self, conversation_id):
        removed = self._entries.pop(conversation_id, None) is not None
        for response_id in [
            r.id
            for r in self._responses.values()
            if r.conversation_id == conversation_id
        ]:
            del self._responses[response_id]
        return removed

    def save_custom_model(self, model):
        self._custom_models[model.id] = model.model_copy(deep=True)

    def get_custom_model(self, model_id):
        model = self._custom_models.get(model_id)
        return model.model_copy(deep=True) if model else None

    def list_custom_models(self):
        return sorted(
            (m.model_copy(deep=True) for m in self._custom_models.values()),
            key=lambda m: m.created_at,
        )

    def delete_custom_model(self, model_id):
        return self._custom_models.pop(model_id, None) is not None


class SQLite(Store):
    """Stores each model as JSON in a small SQLite database."""

    def __init__(self, db_path: Union[Path, str] = ":memory:"):
        self.db_path = str(db_path)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self) -> None:
        self.conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS api_keys (
                provider_name TEXT PRIMARY KEY,
                payload_json TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS conversations (
                id TEXT PRIMARY KEY,
                timestamp TEXT NOT NULL,
                payload_json TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS responses (
                id TEXT PRIMARY KEY,
                conversation_id TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                payload_json TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS responses_by_conversation
                ON responses(conversation_id, timestamp);

            CREATE TABLE IF NOT EXISTS custom_models (
                id TEXT PRIMARY KEY,
                created_at TEXT NOT NULL,
                payload_json TEXT NOT NULL
            );
            """
        )

    def close(self) -> None:
        self.conn.close()

    # --- API keys ---
    def store_api_key(self, secret):
        with self.conn:
            self.conn.execute(
                "INSERT OR REPLACE INTO api_keys (provider_name, payload_json) "
                "VALUES (?, ?)",
                (secret.provider_name, secret.model_dump_json()),
            )

    def get_api_key(self, provider_name):
        row = self.conn.execute(
            "SELECT payload_json FROM api_keys WHERE provider_name = ?",
            (provider_name,),
        ).fetchone()
        return EncryptedSecret.model_validate_json(row["payload_json"]) if row else None

    def get_all_api_keys(self):
        rows = self.conn.execute(
            "SELECT payload_json FROM api_keys ORDER BY provider_name"
        ).fetchall()
        return [
            EncryptedSecret.model_validate_json(row["payload_json"]) for row in rows
        ]

    def delete_api_key(self, provider_name):
        with self.conn:
            cursor = self.conn.execute(
                "DELETE FROM api_keys WHERE provider_name = ?", (provider_name,)
            )
        return cursor.rowcount > 0

    def update_api_key_last_used(self, provider_name, when=None):
        secret = self.get_api_key(provider_name)
        if secret is not None:
            updated = secret.model_copy(update={"last_used": when or _utcnow()})
            self.store_api_key(updated)

    # --- Conversations ---
    def save_conversation(self, entry):
        header = entry.model_copy(update={"responses": []})
        with self.conn:
            self.conn.execute(
                "INSERT OR REPLACE INTO conversations (id, timestamp, payload_json) "
                "VALUES (?, ?, ?)",
                (entry.id, entry.timestamp.isoformat(), header.model_dump_json()),
            )
            self.conn.executemany(
                _UPSERT_RESPONSE,
                [self._response_row(r) for r in entry.responses],
            )

    @staticmethod
    def _response_row(record: ResponseRecord) -> tuple:
        return (
            record.id,
            record.conversation_id,
            record.timestamp.isoformat(),
            record.model_dump_json(),
        )

    def save_response(self, record):
        with self.conn:
            self.conn.execute(
                _UPSERT_RESPONSE,
                self._response_row(record),
            )

    def load_conversation(self, conversation_id):
        row = self.conn.execute(
            "SELECT payload_json FROM conversations WHERE id = ?", (conversation_id,)
        ).fetchone()
        if row is None:
            return None
        entry = ConversationEntry.model_validate_json(row["payload_json"])
        rows = self.conn.execute(
            "SELECT payload_json FROM responses WHERE conversation_id = ? "
            "ORDER BY timestamp",
            (conversation_id,),
        ).fetchall()
        entry.responses = [
            ResponseRecord.model_validate_json(r["payload_json"]) for r in rows
        ]
        return entry

    def list_conversations(self, limit=50, offset=0):
        rows = self.conn.execute(
            "SELECT id FROM conversations ORDER BY timestamp DESC LIMIT ? OFFSET ?",
            (limit, offset),
        ).fetchall()
        return [self.load_conversation(row["id"]) for row in rows]

    def delete_conversation(self, conversation_id):
        with self.conn:
            cursor = self.conn.execute(
                "DELETE FROM conversations WHERE id = ?", (conversation_id,)
            )
            self.conn.execute(
                "DELETE FROM responses WHERE conversation_id = ?", (conversation_id,)
            )
        return cursor.rowcount > 0

    # --- Custom models ---
    def save_custom_model(self, model):
        with self.conn:
            self.conn.execute(
                "INSERT OR REPLACE INTO custom_models (id, created_at, payload_json) "
                "VALUES (?, ?, ?)",
                (model.id, model.created_at.isoformat(), model.model_dump_json()),
            )

    def get_custom_model(self, model_id):
        row = self.conn.execute(
            "SELECT payload_json FROM custom_models WHERE id = ?", (model_id,)
        ).fetchone()
        return CustomModel.model_validate_json(row["payload_json"]) if row else None

    def list_custom_models(self):
        rows = self.conn.execute(
            "SELECT payload_json FROM custom_models ORDER BY created_at"
        ).fetchall()
        return [CustomModel.model_validate_json(row["payload_json"]) for row in rows]

    def delete_custom_model(self, model_id):
        with self.conn:
            cursor = self.conn.execute(
                "DELETE FROM custom_models WHERE id = ?", (model_id,)
            )
        return cursor.rowcount > 0
