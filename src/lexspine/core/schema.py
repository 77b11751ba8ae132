"""
SQLite schema for lexicon-spine.

Defines table names and DDL statements for the job store, the parsed
dictionary, the corpus annotations and the lexicon resources the
resolution cascade reads.

Architecture:
    ::

        Table Registry (CORE_TABLES):
        ┌────────────────────────────────────────────────────────────┐
        │ jobs               → lex_jobs            (Job records)     │
        │ job_events         → lex_job_events      (append-only log) │
        │ job_units          → lex_job_units       (unit sequence)   │
        │ locks              → lex_locks           (single-flight)   │
        │ flags              → lex_flags           (kill switch)     │
        │ rejects            → lex_rejects         (parser rejects)  │
        │ dictionary_entries → lex_dictionary_entries                │
        │ annotations        → lex_annotations                       │
        │ semantic_cache     → lex_semantic_cache  (strategy 1)      │
        │ regional_lexicon   → lex_regional_lexicon (strategy 2)     │
        │ synonyms           → lex_synonyms        (strategy 3)      │
        │ pos_lexicon        → lex_pos_lexicon     (strategy 4)      │
        │ classifier_cache   → lex_classifier_cache (strategy 6)     │
        └────────────────────────────────────────────────────────────┘

    Output tables are keyed on natural keys so every chunk write is an
    idempotent upsert: re-running a chunk after a crash rewrites the same
    rows instead of duplicating them.

Examples:
    >>> from lexspine.core.schema import CORE_TABLES, create_core_tables
    >>> CORE_TABLES["jobs"]
    'lex_jobs'
    >>> create_core_tables(conn)
"""

CORE_TABLES = {
    "jobs": "lex_jobs",
    "job_events": "lex_job_events",
    "job_units": "lex_job_units",
    "locks": "lex_locks",
    "flags": "lex_flags",
    "rejects": "lex_rejects",
    "dictionary_entries": "lex_dictionary_entries",
    "annotations": "lex_annotations",
    "semantic_cache": "lex_semantic_cache",
    "regional_lexicon": "lex_regional_lexicon",
    "synonyms": "lex_synonyms",
    "pos_lexicon": "lex_pos_lexicon",
    "classifier_cache": "lex_classifier_cache",
}


CORE_DDL = {
    # ===== JOB STORE =====
    "jobs": """
        CREATE TABLE IF NOT EXISTS lex_jobs (
            id TEXT PRIMARY KEY,
            kind TEXT NOT NULL,
            status TEXT NOT NULL,
            total_units INTEGER NOT NULL DEFAULT 0,
            processed_count INTEGER NOT NULL DEFAULT 0,
            inserted_count INTEGER NOT NULL DEFAULT 0,
            error_count INTEGER NOT NULL DEFAULT 0,
            unresolved_count INTEGER NOT NULL DEFAULT 0,
            cursor INTEGER NOT NULL DEFAULT 0,
            cancel_requested INTEGER NOT NULL DEFAULT 0,
            cancel_reason TEXT,
            cancelled_by TEXT,
            error_message TEXT,
            metadata TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            started_at TEXT,
            finished_at TEXT
        )
    """,
    "jobs_status_idx": """
        CREATE INDEX IF NOT EXISTS idx_lex_jobs_status ON lex_jobs(status, updated_at)
    """,
    "job_events": """
        CREATE TABLE IF NOT EXISTS lex_job_events (
            id TEXT PRIMARY KEY,
            job_id TEXT NOT NULL,
            event_type TEXT NOT NULL,
            timestamp TEXT NOT NULL,
            data TEXT
        )
    """,
    "job_events_idx": """
        CREATE INDEX IF NOT EXISTS idx_lex_job_events_job ON lex_job_events(job_id, timestamp)
    """,
    "job_units": """
        CREATE TABLE IF NOT EXISTS lex_job_units (
            job_id TEXT NOT NULL,
            idx INTEGER NOT NULL,
            payload TEXT NOT NULL,
            PRIMARY KEY (job_id, idx)
        )
    """,
    "locks": """
        CREATE TABLE IF NOT EXISTS lex_locks (
            lock_key TEXT PRIMARY KEY,
            owner TEXT NOT NULL,
            acquired_at TEXT NOT NULL,
            expires_at TEXT NOT NULL
        )
    """,
    "flags": """
        CREATE TABLE IF NOT EXISTS lex_flags (
            flag_key TEXT PRIMARY KEY,
            reason TEXT,
            set_by TEXT,
            set_at TEXT NOT NULL,
            expires_at TEXT
        )
    """,
    "rejects": """
        CREATE TABLE IF NOT EXISTS lex_rejects (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            job_id TEXT NOT NULL,
            source TEXT,
            line_number INTEGER,
            reason TEXT NOT NULL,
            raw_text TEXT,
            created_at TEXT NOT NULL
        )
    """,
    # ===== DICTIONARY IMPORT OUTPUT =====
    "dictionary_entries": """
        CREATE TABLE IF NOT EXISTS lex_dictionary_entries (
            source TEXT NOT NULL,
            key TEXT NOT NULL,
            headword TEXT NOT NULL,
            entry_type TEXT NOT NULL DEFAULT 'word',
            body TEXT NOT NULL,
            category TEXT,
            gender TEXT,
            etymology TEXT,
            origin_language TEXT,
            cross_references TEXT,
            usage_markers TEXT,
            confidence REAL NOT NULL,
            line_number INTEGER,
            job_id TEXT,
            updated_at TEXT NOT NULL,
            PRIMARY KEY (source, key)
        )
    """,
    # ===== CORPUS ANNOTATION OUTPUT =====
    "annotations": """
        CREATE TABLE IF NOT EXISTS lex_annotations (
            corpus TEXT NOT NULL,
            song_id TEXT NOT NULL,
            position INTEGER NOT NULL,
            word TEXT NOT NULL,
            key TEXT NOT NULL,
            pos TEXT,
            lemma TEXT,
            sentence TEXT,
            classification TEXT,
            confidence REAL,
            strategy TEXT,
            is_propagated INTEGER NOT NULL DEFAULT 0,
            is_curated INTEGER NOT NULL DEFAULT 0,
            invalidated INTEGER NOT NULL DEFAULT 0,
            context_hash TEXT,
            job_id TEXT,
            updated_at TEXT NOT NULL,
            PRIMARY KEY (corpus, song_id, position)
        )
    """,
    "annotations_key_idx": """
        CREATE INDEX IF NOT EXISTS idx_lex_annotations_key ON lex_annotations(key)
    """,
    # ===== LEXICON RESOURCES =====
    "semantic_cache": """
        CREATE TABLE IF NOT EXISTS lex_semantic_cache (
            key TEXT PRIMARY KEY,
            classification TEXT NOT NULL,
            confidence REAL NOT NULL,
            source TEXT,
            updated_at TEXT NOT NULL
        )
    """,
    "regional_lexicon": """
        CREATE TABLE IF NOT EXISTS lex_regional_lexicon (
            key TEXT PRIMARY KEY,
            classification TEXT NOT NULL,
            confidence REAL NOT NULL,
            region TEXT
        )
    """,
    "synonyms": """
        CREATE TABLE IF NOT EXISTS lex_synonyms (
            key_a TEXT NOT NULL,
            key_b TEXT NOT NULL,
            PRIMARY KEY (key_a, key_b)
        )
    """,
    "synonyms_b_idx": """
        CREATE INDEX IF NOT EXISTS idx_lex_synonyms_b ON lex_synonyms(key_b)
    """,
    "pos_lexicon": """
        CREATE TABLE IF NOT EXISTS lex_pos_lexicon (
            key TEXT NOT NULL,
            pos TEXT NOT NULL DEFAULT '',
            classification TEXT NOT NULL,
            confidence REAL NOT NULL,
            PRIMARY KEY (key, pos)
        )
    """,
    "classifier_cache": """
        CREATE TABLE IF NOT EXISTS lex_classifier_cache (
            key TEXT NOT NULL,
            context_hash TEXT NOT NULL,
            classification TEXT NOT NULL,
            confidence REAL NOT NULL,
            is_polysemous INTEGER NOT NULL DEFAULT 0,
            model TEXT,
            created_at TEXT NOT NULL,
            PRIMARY KEY (key, context_hash)
        )
    """,
}


def create_core_tables(conn) -> None:
    """
    Create all lexicon-spine tables.

    Safe to call multiple times (CREATE IF NOT EXISTS).
    """
    for _name, ddl in CORE_DDL.items():
        conn.execute(ddl)
    conn.commit()
