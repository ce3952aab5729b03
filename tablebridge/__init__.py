# ==============================================
# tablebridge: Record API -> Relational Import Engine
# ==============================================
#
# Package Structure (4 Topics + Orchestrator):
#
# tablebridge/
# ├── mapping/          # Topic 1: Field definitions -> typed columns
# ├── analysis/         # Topic 2: Link-field cardinality & proposals
# ├── storage/          # Topic 3: MySQL column plans, upserts, DDL
# ├── persistence/      # Topic 4: Import sessions across restarts
# ├── source/           # External record API client
# ├── config.py         # Configuration management
# ├── progress.py       # Progress events and sinks
# ├── orchestrator.py   # ImportOrchestrator (session state machine)
# └── cli.py            # Command line entry point
#
# ==============================================

__version__ = "0.1.0"
