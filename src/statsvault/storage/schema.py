"""SQL schema definitions for the stats database.

Tables:
- _meta: internal key/value bookkeeping (e.g. last VACUUM time)
- _migrations: applied schema versions with status
- query_events: one row per agent query
- auto_run_sessions / auto_run_tasks: batch execution tracking
- session_lifecycle: agent session open/close times (schema v3)
"""

CREATE_META_TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS _meta (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL
    )
"""

CREATE_MIGRATIONS_TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS _migrations (
        version INTEGER PRIMARY KEY,
        description TEXT NOT NULL,
        applied_at INTEGER NOT NULL,
        status TEXT NOT NULL CHECK (status IN ('success', 'failed')),
        error_message TEXT
    )
"""

# =============================================================================
# Schema v1: initial telemetry tables
# =============================================================================

CREATE_QUERY_EVENTS_SQL = """
    CREATE TABLE IF NOT EXISTS query_events (
        id TEXT PRIMARY KEY,
        session_id TEXT NOT NULL,
        agent_type TEXT NOT NULL,
        source TEXT NOT NULL CHECK (source IN ('user', 'auto')),
        start_time INTEGER NOT NULL,
        duration INTEGER NOT NULL,
        project_path TEXT,
        tab_id TEXT
    )
"""

CREATE_AUTO_RUN_SESSIONS_SQL = """
    CREATE TABLE IF NOT EXISTS auto_run_sessions (
        id TEXT PRIMARY KEY,
        session_id TEXT NOT NULL,
        agent_type TEXT NOT NULL,
        document_path TEXT,
        start_time INTEGER NOT NULL,
        duration INTEGER NOT NULL DEFAULT 0,
        tasks_total INTEGER,
        tasks_completed INTEGER,
        project_path TEXT
    )
"""

CREATE_AUTO_RUN_TASKS_SQL = """
    CREATE TABLE IF NOT EXISTS auto_run_tasks (
        id TEXT PRIMARY KEY,
        auto_run_session_id TEXT NOT NULL REFERENCES auto_run_sessions(id),
        session_id TEXT NOT NULL,
        agent_type TEXT NOT NULL,
        task_index INTEGER NOT NULL,
        task_content TEXT,
        start_time INTEGER NOT NULL,
        duration INTEGER NOT NULL,
        success INTEGER NOT NULL CHECK (success IN (0, 1))
    )
"""

V1_INDEXES_SQL = (
    "CREATE INDEX IF NOT EXISTS idx_query_start_time ON query_events(start_time)",
    "CREATE INDEX IF NOT EXISTS idx_query_agent_type ON query_events(agent_type)",
    "CREATE INDEX IF NOT EXISTS idx_query_source ON query_events(source)",
    "CREATE INDEX IF NOT EXISTS idx_query_session ON query_events(session_id)",
    "CREATE INDEX IF NOT EXISTS idx_auto_session_start ON auto_run_sessions(start_time)",
    "CREATE INDEX IF NOT EXISTS idx_task_auto_session ON auto_run_tasks(auto_run_session_id)",
    "CREATE INDEX IF NOT EXISTS idx_task_start ON auto_run_tasks(start_time)",
)

# =============================================================================
# Schema v3: session lifecycle
# =============================================================================

CREATE_SESSION_LIFECYCLE_SQL = """
    CREATE TABLE IF NOT EXISTS session_lifecycle (
        id TEXT PRIMARY KEY,
        session_id TEXT NOT NULL UNIQUE,
        agent_type TEXT NOT NULL,
        project_path TEXT,
        created_at INTEGER NOT NULL,
        closed_at INTEGER,
        duration INTEGER,
        is_remote INTEGER NOT NULL DEFAULT 0
    )
"""

V3_INDEXES_SQL = (
    "CREATE INDEX IF NOT EXISTS idx_session_created_at ON session_lifecycle(created_at)",
    "CREATE INDEX IF NOT EXISTS idx_session_agent_type ON session_lifecycle(agent_type)",
)
