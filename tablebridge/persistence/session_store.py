# ==============================================
# SessionStore
# ==============================================
#
# PURPOSE:
#   Durable persistence of import sessions, per-table column plans,
#   relationship candidates and proposals, so a session can be
#   inspected, retried or analyzed after a restart.
#
# WHY THIS CLASS EXISTS:
#   The store is also the ONLY place the per-session run lock lives.
#   acquire_run_lock() is a conditional update "status != RUNNING →
#   RUNNING"; a second orchestrator asking for the same session gets
#   a ConflictError and nothing is mutated.
#
# CLASSES:
# --------
# - SessionStore            → Interface (every backend implements it)
# - JsonSessionStore        → One directory per session, JSON files
# - MongoSessionStore       → pymongo collections, atomic find_one_and_update
#
#   Methods:
#   --------
#   SESSIONS:
#   - create_session(session) / save_session(session)
#   - get_session(session_id) -> ImportSession
#   - list_sessions(owner_id=None) -> list[ImportSession]
#   - acquire_run_lock(session_id) -> ImportSession
#
#   CANCELLATION:
#   - request_cancel(session_id) / is_cancel_requested(session_id) / clear_cancel(session_id)
#
#   PLANS:
#   - save_column_plan(session_id, table, columns)
#   - load_column_plans(session_id) -> dict[str, list[ColumnDefinition]]
#
#   RELATIONSHIPS:
#   - upsert_candidate(candidate) -> RelationshipCandidate
#   - list_candidates(session_id) / save_candidate(candidate)
#   - save_proposal(proposal) / get_proposal(session_id, proposal_id)
#   - list_proposals(session_id)
#
# ==============================================

import json
import threading
from pathlib import Path
from typing import Dict, List, Optional

from loguru import logger
from pymongo import ASCENDING, MongoClient as PyMongoClient, ReturnDocument
from pymongo.errors import ConnectionFailure, OperationFailure

from tablebridge.analysis.relationships import Proposal, RelationshipCandidate, proposal_from_dict
from tablebridge.errors import ConflictError, SessionNotFoundError
from tablebridge.mapping.models import ColumnDefinition
from tablebridge.persistence.session import ImportSession, SessionStatus


class SessionStore:
    """Interface for session persistence backends."""

    # --- Sessions ---
    def create_session(self, session: ImportSession) -> None:
        raise NotImplementedError

    def save_session(self, session: ImportSession) -> None:
        raise NotImplementedError

    def get_session(self, session_id: str) -> ImportSession:
        raise NotImplementedError

    def list_sessions(self, owner_id: Optional[str] = None) -> List[ImportSession]:
        raise NotImplementedError

    def acquire_run_lock(self, session_id: str) -> ImportSession:
        """
        Atomically move a session from any non-RUNNING status to RUNNING.

        Returns:
            The session as stored after the transition

        Raises:
            ConflictError: if the session is already RUNNING
            SessionNotFoundError: if the session does not exist
        """
        raise NotImplementedError

    # --- Cancellation ---
    def request_cancel(self, session_id: str) -> None:
        raise NotImplementedError

    def is_cancel_requested(self, session_id: str) -> bool:
        raise NotImplementedError

    def clear_cancel(self, session_id: str) -> None:
        raise NotImplementedError

    # --- Column plans ---
    def save_column_plan(self, session_id: str, table_name: str, columns: List[ColumnDefinition]) -> None:
        raise NotImplementedError

    def load_column_plans(self, session_id: str) -> Dict[str, List[ColumnDefinition]]:
        raise NotImplementedError

    # --- Relationships ---
    def upsert_candidate(self, candidate: RelationshipCandidate) -> RelationshipCandidate:
        """
        Insert or replace the candidate for (session, table, field).

        An existing candidate keeps its id and approval flag.
        """
        raise NotImplementedError

    def save_candidate(self, candidate: RelationshipCandidate) -> None:
        raise NotImplementedError

    def list_candidates(self, session_id: str) -> List[RelationshipCandidate]:
        raise NotImplementedError

    def save_proposal(self, proposal: Proposal) -> None:
        raise NotImplementedError

    def get_proposal(self, session_id: str, proposal_id: str) -> Optional[Proposal]:
        raise NotImplementedError

    def list_proposals(self, session_id: str) -> List[Proposal]:
        raise NotImplementedError


# ==============================================
# JSON files
# ==============================================

class JsonSessionStore(SessionStore):
    """
    File-backed store.

    Files created per session:
    - {sessions_dir}/{id}/session.json     → ImportSession
    - {sessions_dir}/{id}/plans.json       → Column plans per table
    - {sessions_dir}/{id}/candidates.json  → Relationship candidates
    - {sessions_dir}/{id}/proposals.json   → Junction / FK proposals
    - {sessions_dir}/{id}/cancel           → Present while a cancel is pending

    The run lock is guarded by a process-wide lock; use MongoSessionStore
    when several processes share sessions.
    """

    _lock = threading.RLock()

    def __init__(self, sessions_dir: str = "sessions/"):
        """
        Initialize the store.

        Args:
            sessions_dir: Directory holding one sub-directory per session
        """
        self.sessions_dir = Path(sessions_dir)

        # Create directory if it doesn't exist
        self.sessions_dir.mkdir(parents=True, exist_ok=True)

    # ======================================
    # Sessions
    # ======================================
    def create_session(self, session: ImportSession) -> None:
        with self._lock:
            self._session_dir(session.id).mkdir(parents=True, exist_ok=True)
            self._write(self._file(session.id, "session.json"), session.to_dict())
        logger.debug(f"Created session {session.id} for owner {session.owner_id}")

    def save_session(self, session: ImportSession) -> None:
        with self._lock:
            self._write(self._file(session.id, "session.json"), session.to_dict())

    def get_session(self, session_id: str) -> ImportSession:
        data = self._read(self._file(session_id, "session.json"), None)
        if data is None:
            raise SessionNotFoundError(session_id)
        return ImportSession.from_dict(data)

    def list_sessions(self, owner_id: Optional[str] = None) -> List[ImportSession]:
        sessions = []
        for path in sorted(self.sessions_dir.glob("*/session.json")):
            session = ImportSession.from_dict(self._read(path, {}))
            if owner_id is None or session.owner_id == owner_id:
                sessions.append(session)
        sessions.sort(key=lambda s: s.start_time, reverse=True)
        return sessions

    def acquire_run_lock(self, session_id: str) -> ImportSession:
        with self._lock:
            session = self.get_session(session_id)
            if session.status is SessionStatus.RUNNING:
                raise ConflictError(session_id)
            session.status = SessionStatus.RUNNING
            self._write(self._file(session_id, "session.json"), session.to_dict())
            return session

    # ======================================
    # Cancellation
    # ======================================
    def request_cancel(self, session_id: str) -> None:
        self.get_session(session_id)
        self._file(session_id, "cancel").touch()

    def is_cancel_requested(self, session_id: str) -> bool:
        return self._file(session_id, "cancel").exists()

    def clear_cancel(self, session_id: str) -> None:
        self._file(session_id, "cancel").unlink(missing_ok=True)

    # ======================================
    # Column plans
    # ======================================
    def save_column_plan(self, session_id: str, table_name: str, columns: List[ColumnDefinition]) -> None:
        with self._lock:
            path = self._file(session_id, "plans.json")
            plans = self._read(path, {})
            plans[table_name] = [c.to_dict() for c in columns]
            self._write(path, plans)

    def load_column_plans(self, session_id: str) -> Dict[str, List[ColumnDefinition]]:
        plans = self._read(self._file(session_id, "plans.json"), {})
        return {
            table: [ColumnDefinition.from_dict(c) for c in columns]
            for table, columns in plans.items()
        }

    # ======================================
    # Relationships
    # ======================================
    def upsert_candidate(self, candidate: RelationshipCandidate) -> RelationshipCandidate:
        with self._lock:
            path = self._file(candidate.session_id, "candidates.json")
            stored = self._read(path, [])
            for i, existing in enumerate(stored):
                if (existing["source_table"], existing["field_name"]) == (
                    candidate.source_table, candidate.field_name
                ):
                    candidate.id = existing["id"]
                    candidate.approved = existing.get("approved", False)
                    stored[i] = candidate.to_dict()
                    break
            else:
                stored.append(candidate.to_dict())
            self._write(path, stored)
        return candidate

    def save_candidate(self, candidate: RelationshipCandidate) -> None:
        with self._lock:
            path = self._file(candidate.session_id, "candidates.json")
            stored = self._read(path, [])
            stored = [c for c in stored if c["id"] != candidate.id]
            stored.append(candidate.to_dict())
            self._write(path, stored)

    def list_candidates(self, session_id: str) -> List[RelationshipCandidate]:
        stored = self._read(self._file(session_id, "candidates.json"), [])
        return [RelationshipCandidate.from_dict(c) for c in stored]

    def save_proposal(self, proposal: Proposal) -> None:
        with self._lock:
            path = self._file(proposal.session_id, "proposals.json")
            stored = self._read(path, {})
            stored[proposal.id] = proposal.to_dict()
            self._write(path, stored)

    def get_proposal(self, session_id: str, proposal_id: str) -> Optional[Proposal]:
        data = self._read(self._file(session_id, "proposals.json"), {}).get(proposal_id)
        return proposal_from_dict(data) if data else None

    def list_proposals(self, session_id: str) -> List[Proposal]:
        stored = self._read(self._file(session_id, "proposals.json"), {})
        return [proposal_from_dict(p) for p in stored.values()]

    # ======================================
    # File helpers
    # ======================================
    def _session_dir(self, session_id: str) -> Path:
        return self.sessions_dir / session_id

    def _file(self, session_id: str, name: str) -> Path:
        return self._session_dir(session_id) / name

    @staticmethod
    def _read(path: Path, default):
        if not path.exists():
            return default
        with open(path, 'r') as f:
            return json.load(f)

    @staticmethod
    def _write(path: Path, data) -> None:
        # Write to a sibling file first so readers never see half a document
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        with open(tmp, 'w') as f:
            json.dump(data, f, indent=2)
        tmp.replace(path)


# ==============================================
# MongoDB
# ==============================================

class MongoSessionStore(SessionStore):
    """
    MongoDB-backed store; safe to share between processes.

    Collections:
    - import_sessions           (_id = session id)
    - column_plans              (session_id, table_name) unique
    - relationship_candidates   (session_id, source_table, field_name) unique
    - relationship_proposals    (_id = proposal id)
    """

    def __init__(self, host, port, database, user=None, password=None, client=None):
        # Store connection params. Don't connect yet.
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.client = client  # Injected client skips connect()

    def connect(self) -> None:
        if self.client is None:
            if self.user and self.password:
                uri = f"mongodb://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"
            else:
                uri = f"mongodb://{self.host}:{self.port}/{self.database}"
            try:
                self.client = PyMongoClient(uri)
                self.client.admin.command('ping')
            except ConnectionFailure as e:
                logger.error(f"Could not connect to MongoDB: {e}")
                raise
            except OperationFailure as e:
                logger.error(f"MongoDB authentication failed: {e}")
                raise
            logger.info(f"Connected to MongoDB at {self.host}:{self.port}")
        self.ensure_indexes()

    def disconnect(self) -> None:
        if self.client:
            self.client.close()
            self.client = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.disconnect()
        return False

    def ensure_indexes(self) -> None:
        db = self._db()
        db.import_sessions.create_index([("owner_id", ASCENDING)])
        db.column_plans.create_index(
            [("session_id", ASCENDING), ("table_name", ASCENDING)], unique=True
        )
        db.relationship_candidates.create_index(
            [("session_id", ASCENDING), ("source_table", ASCENDING), ("field_name", ASCENDING)],
            unique=True,
        )
        db.relationship_proposals.create_index([("session_id", ASCENDING)])

    # ======================================
    # Sessions
    # ======================================
    def create_session(self, session: ImportSession) -> None:
        doc = session.to_dict()
        doc["_id"] = session.id
        doc["cancel_requested"] = False
        self._db().import_sessions.insert_one(doc)

    def save_session(self, session: ImportSession) -> None:
        # $set leaves cancel_requested untouched
        self._db().import_sessions.update_one(
            {"_id": session.id}, {"$set": session.to_dict()}, upsert=True
        )

    def get_session(self, session_id: str) -> ImportSession:
        doc = self._db().import_sessions.find_one({"_id": session_id})
        if doc is None:
            raise SessionNotFoundError(session_id)
        return ImportSession.from_dict(doc)

    def list_sessions(self, owner_id: Optional[str] = None) -> List[ImportSession]:
        query = {"owner_id": owner_id} if owner_id is not None else {}
        cursor = self._db().import_sessions.find(query).sort("start_time", -1)
        return [ImportSession.from_dict(doc) for doc in cursor]

    def acquire_run_lock(self, session_id: str) -> ImportSession:
        doc = self._db().import_sessions.find_one_and_update(
            {"_id": session_id, "status": {"$ne": SessionStatus.RUNNING.value}},
            {"$set": {"status": SessionStatus.RUNNING.value}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            # Either missing or already running
            self.get_session(session_id)
            raise ConflictError(session_id)
        return ImportSession.from_dict(doc)

    # ======================================
    # Cancellation
    # ======================================
    def request_cancel(self, session_id: str) -> None:
        result = self._db().import_sessions.update_one(
            {"_id": session_id}, {"$set": {"cancel_requested": True}}
        )
        if result.matched_count == 0:
            raise SessionNotFoundError(session_id)

    def is_cancel_requested(self, session_id: str) -> bool:
        doc = self._db().import_sessions.find_one({"_id": session_id}, {"cancel_requested": 1})
        return bool(doc and doc.get("cancel_requested"))

    def clear_cancel(self, session_id: str) -> None:
        self._db().import_sessions.update_one(
            {"_id": session_id}, {"$set": {"cancel_requested": False}}
        )

    # ======================================
    # Column plans
    # ======================================
    def save_column_plan(self, session_id: str, table_name: str, columns: List[ColumnDefinition]) -> None:
        self._db().column_plans.update_one(
            {"session_id": session_id, "table_name": table_name},
            {"$set": {"columns": [c.to_dict() for c in columns]}},
            upsert=True,
        )

    def load_column_plans(self, session_id: str) -> Dict[str, List[ColumnDefinition]]:
        return {
            doc["table_name"]: [ColumnDefinition.from_dict(c) for c in doc.get("columns", [])]
            for doc in self._db().column_plans.find({"session_id": session_id})
        }

    # ======================================
    # Relationships
    # ======================================
    def upsert_candidate(self, candidate: RelationshipCandidate) -> RelationshipCandidate:
        key = {
            "session_id": candidate.session_id,
            "source_table": candidate.source_table,
            "field_name": candidate.field_name,
        }
        fields = candidate.to_dict()
        # Identity and approval survive re-analysis
        on_insert = {"id": fields.pop("id"), "approved": fields.pop("approved")}
        for k in key:
            fields.pop(k)
        doc = self._db().relationship_candidates.find_one_and_update(
            key,
            {"$set": fields, "$setOnInsert": on_insert},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return RelationshipCandidate.from_dict(doc)

    def save_candidate(self, candidate: RelationshipCandidate) -> None:
        self._db().relationship_candidates.update_one(
            {"session_id": candidate.session_id, "id": candidate.id},
            {"$set": candidate.to_dict()},
        )

    def list_candidates(self, session_id: str) -> List[RelationshipCandidate]:
        return [
            RelationshipCandidate.from_dict(doc)
            for doc in self._db().relationship_candidates.find({"session_id": session_id})
        ]

    def save_proposal(self, proposal: Proposal) -> None:
        self._db().relationship_proposals.update_one(
            {"_id": proposal.id}, {"$set": proposal.to_dict()}, upsert=True
        )

    def get_proposal(self, session_id: str, proposal_id: str) -> Optional[Proposal]:
        doc = self._db().relationship_proposals.find_one({"_id": proposal_id, "session_id": session_id})
        return proposal_from_dict(doc) if doc else None

    def list_proposals(self, session_id: str) -> List[Proposal]:
        return [
            proposal_from_dict(doc)
            for doc in self._db().relationship_proposals.find({"session_id": session_id})
        ]

    def _db(self):
        if not self.client:
            raise ConnectionError("Not connected to MongoDB.")
        return self.client[self.database]
