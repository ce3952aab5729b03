# ==============================================
# CLI: Command Line Entry Point
# ==============================================
#
# PURPOSE:
#   Command-line interface to the import engine. Builds the
#   collaborators from configuration and hands them to one
#   ImportOrchestrator.
#
# COMMANDS:
# ---------
# 1. Import tables:
#    python -m tablebridge.cli import Projects Tasks --mode sync
#
# 2. Show a session (or list sessions):
#    python -m tablebridge.cli status <session_id>
#    python -m tablebridge.cli status --owner alice
#
# 3. Retry one table of a finished session:
#    python -m tablebridge.cli retry <session_id> Tasks
#
# 4. Analyze relationships of an imported session:
#    python -m tablebridge.cli analyze <session_id>
#
# 5. Approve and materialize candidates:
#    python -m tablebridge.cli apply <session_id> <candidate_id> ...
#
# 6. Mapping coverage of a table (no writes):
#    python -m tablebridge.cli coverage Tasks
#
# ==============================================

import argparse
import getpass
import json
import sys
from typing import List, Optional

from loguru import logger

from tablebridge.config import AppConfig, get_config
from tablebridge.errors import TablebridgeError
from tablebridge.log import configure_logging
from tablebridge.mapping.registry import FieldMapperRegistry
from tablebridge.orchestrator import ImportOrchestrator
from tablebridge.persistence.session import ImportSession, SessionStatus
from tablebridge.persistence.session_store import JsonSessionStore, MongoSessionStore, SessionStore
from tablebridge.progress import LogProgressSink
from tablebridge.source.airtable_client import AirtableSource
from tablebridge.storage.mysql_client import MySQLClient


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tablebridge", description="Import record API tables into MySQL")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    parser.add_argument("--log-file", default=None, help="Also write DEBUG logs to this file")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("import", help="Import tables into a new session")
    p.add_argument("tables", nargs="+")
    p.add_argument("--mode", choices=["insert", "upsert", "sync"], default=None)
    p.add_argument("--owner", default=None, help="Session owner (default: current user)")

    p = sub.add_parser("status", help="Show one session, or list sessions")
    p.add_argument("session_id", nargs="?")
    p.add_argument("--owner", default=None)

    p = sub.add_parser("retry", help="Retry one table of a finished session")
    p.add_argument("session_id")
    p.add_argument("table")

    p = sub.add_parser("analyze", help="Infer relationships from staged link/select columns")
    p.add_argument("session_id")

    p = sub.add_parser("apply", help="Approve candidates and materialize their proposals")
    p.add_argument("session_id")
    p.add_argument("candidate_ids", nargs="+")

    p = sub.add_parser("coverage", help="Report which fields of a table have a dedicated mapper")
    p.add_argument("table")

    return parser


def build_store(config: AppConfig) -> SessionStore:
    if config.imports.session_backend == "mongo":
        store = MongoSessionStore(
            host=config.mongo.host,
            port=config.mongo.port,
            database=config.mongo.database,
            user=config.mongo.user,
            password=config.mongo.password,
        )
        store.connect()
        return store
    return JsonSessionStore(config.imports.sessions_dir)


def build_source(config: AppConfig) -> AirtableSource:
    return AirtableSource(
        config.source.api_token,
        config.source.base_id,
        base_url=config.source.base_url,
        timeout_s=config.source.timeout_seconds,
        page_size=config.imports.page_size,
        max_retries=config.source.max_retries,
    )


def print_session(session: ImportSession) -> None:
    print("=" * 60)
    print(f"Session {session.id}  [{session.status.value}]")
    print("=" * 60)
    print(f"   Owner:   {session.owner_id}")
    print(f"   Mode:    {session.mode.value}")
    print(f"   Records: {session.processed_records}/{session.total_records}")
    if session.error_message:
        print(f"   Error:   {session.error_message}")
    for name in session.table_names:
        result = session.per_table_results.get(name)
        if result is None:
            print(f"   - {name}: not reached")
        elif result.success:
            print(f"   ✓ {name}: {result.processed_records}/{result.total_records} "
                  f"(updated {result.updated_records}, skipped {result.skipped_records}, "
                  f"deleted {result.deleted_records})")
        else:
            print(f"   ✗ {name}: {result.error}")
    if session.unresolved_staging:
        print(f"   Unresolved staging columns: {', '.join(session.unresolved_staging)}")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = get_config()
    configure_logging(args.log_level or config.log_level, args.log_file)

    registry = FieldMapperRegistry()

    if args.command == "coverage":
        try:
            fields = build_source(config).list_fields(args.table)
        except TablebridgeError as e:
            logger.error(str(e))
            return 1
        print(json.dumps(registry.coverage(fields), indent=2))
        return 0

    store = build_store(config)
    storage = MySQLClient(
        host=config.mysql.host,
        port=config.mysql.port,
        user=config.mysql.user,
        password=config.mysql.password,
        database=config.mysql.database,
    )

    try:
        with storage:
            orchestrator = ImportOrchestrator(
                source=build_source(config),
                storage=storage,
                store=store,
                registry=registry,
                progress_sink=LogProgressSink(),
                thresholds=config.thresholds,
                config=config.imports,
            )
            return run_command(orchestrator, args)
    except (TablebridgeError, ValueError) as e:
        logger.error(str(e))
        return 1
    finally:
        if isinstance(store, MongoSessionStore):
            store.disconnect()


def run_command(orchestrator: ImportOrchestrator, args: argparse.Namespace) -> int:
    if args.command == "import":
        owner = args.owner or getpass.getuser()
        session_id = orchestrator.start_import(owner, args.tables, args.mode)
        session = orchestrator.get_session(session_id)
        print_session(session)
        return _exit_code(session)

    elif args.command == "status":
        if args.session_id:
            print_session(orchestrator.get_session(args.session_id))
        else:
            for session in orchestrator.list_sessions(args.owner):
                print(f"{session.id}  {session.status.value:<15} {session.owner_id:<12} "
                      f"{session.start_time}  {', '.join(session.table_names)}")

    elif args.command == "retry":
        result = orchestrator.retry_table(args.session_id, args.table)
        print(json.dumps(result.to_dict(), indent=2))
        session = orchestrator.get_session(args.session_id)
        print_session(session)
        return _exit_code(session)

    elif args.command == "analyze":
        candidates = orchestrator.analyze_relationships(args.session_id)
        print(f"\n{len(candidates)} candidate(s):")
        for c in candidates:
            mark = "✓" if c.approved else " "
            print(f"   [{mark}] {c.id}  {c.source_table}.{c.field_name} → {c.target_table}  "
                  f"{c.cardinality.value} ({c.confidence_score:.2f})")
        session = orchestrator.get_session(args.session_id)
        if session.unresolved_staging:
            print(f"\n   Unresolved: {', '.join(session.unresolved_staging)}")

    elif args.command == "apply":
        proposals = orchestrator.apply_approved_relationships(args.session_id, args.candidate_ids)
        for p in proposals:
            print(f"   ✓ {p.kind} {p.id} (created {p.created_at})")

    return 0


def _exit_code(session: ImportSession) -> int:
    # 2 tells scripts the session finished but not every table made it
    return 0 if session.status is SessionStatus.COMPLETED else 2


if __name__ == "__main__":
    sys.exit(main())
