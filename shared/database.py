# Feedback Shared Database Functions
# All relational store read/write operations

from datetime import datetime, timedelta, timezone

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    and_,
    create_engine,
    func,
    insert,
    or_,
    select,
    update,
)

from .config import DATABASE_URL, RECENT_FEEDBACK_LIMIT, RUN_LEASE_SECONDS
from .helpers import to_json


def _utcnow():
    return datetime.now(timezone.utc)


metadata = MetaData()

feedback_table = Table(
    'feedback',
    metadata,
    Column('id', Integer, primary_key=True),
    Column('run_id', String(64), unique=True, nullable=True),
    Column('source', Text, nullable=False),
    Column('content', Text, nullable=False),
    Column('sentiment', String(64)),
    Column('category', String(64)),
    Column('urgency', String(64)),
    Column('reason', Text),
    Column('created_at', DateTime(timezone=True), nullable=False, default=_utcnow),
)

stats_table = Table(
    'aggregated_stats',
    metadata,
    Column('id', Integer, primary_key=True),
    Column('stat_type', String(128), unique=True, nullable=False),
    Column('stat_value', Text),
    Column('updated_at', DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow),
)

runs_table = Table(
    'workflow_runs',
    metadata,
    Column('id', String(64), primary_key=True),
    Column('status', String(16), nullable=False),
    Column('params', Text, nullable=False),
    Column('output', Text),
    Column('error', Text),
    Column('created_at', DateTime(timezone=True), nullable=False, default=_utcnow),
    Column('updated_at', DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow),
)

steps_table = Table(
    'workflow_steps',
    metadata,
    Column('id', Integer, primary_key=True),
    Column('run_id', String(64), nullable=False),
    Column('name', String(128), nullable=False),
    Column('output', Text),
    Column('attempts', Integer, nullable=False, default=1),
    Column('created_at', DateTime(timezone=True), nullable=False, default=_utcnow),
    UniqueConstraint('run_id', 'name', name='uq_workflow_step'),
)

# Demo rows shipped with the original dashboard
SEED_FEEDBACK = [
    ('Discord', 'The new dashboard is loading really slow', 'negative', 'bug', 'high'),
    ('GitHub', 'Can we add dark mode support?', 'neutral', 'feature', 'medium'),
    ('Support Ticket', 'I love the new API features!', 'positive', 'feature', 'low'),
    ('Twitter', 'Getting 500 errors when uploading files', 'negative', 'bug', 'high'),
    ('Email', 'Documentation could be clearer on authentication', 'neutral', 'question', 'medium'),
]


def create_db_engine(url=None):
    """Create a SQLAlchemy engine for the feedback store.

    SQLite connections are shared with the workflow worker threads, so the
    same-thread check is switched off for them.
    """
    url = url or DATABASE_URL
    connect_args = {}
    if url.startswith('sqlite'):
        connect_args['check_same_thread'] = False
    return create_engine(url, connect_args=connect_args)


def init_db(engine):
    """Create all tables if they don't exist"""
    metadata.create_all(engine)


def _serialize_row(row):
    record = dict(row._mapping)
    for key, value in record.items():
        if isinstance(value, datetime):
            # Every timestamp is written in UTC; SQLite hands them back naive
            if value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            record[key] = value.isoformat()
    return record


# ===================
# FEEDBACK OPERATIONS
# ===================

def insert_feedback(engine, source, content, classification, run_id=None):
    """Insert one classified feedback record.

    When run_id is given it acts as an idempotency key: a retried insert for
    the same run returns the id of the row already written.
    Returns the record id.
    """
    with engine.begin() as conn:
        if run_id is not None:
            existing = conn.execute(
                select(feedback_table.c.id).where(feedback_table.c.run_id == run_id)
            ).scalar()
            if existing is not None:
                print(f"Feedback for run {run_id} already stored as #{existing}")
                return existing

        result = conn.execute(
            insert(feedback_table).values(
                run_id=run_id,
                source=source,
                content=content,
                sentiment=classification['sentiment'],
                category=classification['category'],
                urgency=classification['urgency'],
                reason=classification.get('reason'),
            )
        )
        record_id = result.inserted_primary_key[0]

    print(f"Stored feedback #{record_id} from {source}")
    return record_id


def count_feedback_by_category(engine, category):
    """Count feedback records in one category"""
    with engine.connect() as conn:
        return conn.execute(
            select(func.count()).select_from(feedback_table).where(feedback_table.c.category == category)
        ).scalar_one()


def get_recent_feedback(engine, limit=RECENT_FEEDBACK_LIMIT):
    """Newest feedback records first, at most `limit` of them"""
    query = (
        select(feedback_table)
        .order_by(feedback_table.c.created_at.desc(), feedback_table.c.id.desc())
        .limit(limit)
    )
    with engine.connect() as conn:
        return [_serialize_row(row) for row in conn.execute(query)]


def get_grouped_counts(engine):
    """Feedback counts grouped by category, sentiment and urgency.

    Returns {'categories': [...], 'sentiments': [...], 'urgency': [...]},
    each a list of {<dimension>: value, 'count': n}.
    """
    dimensions = {
        'categories': feedback_table.c.category,
        'sentiments': feedback_table.c.sentiment,
        'urgency': feedback_table.c.urgency,
    }

    grouped = {}
    with engine.connect() as conn:
        for key, column in dimensions.items():
            rows = conn.execute(
                select(column, func.count().label('count')).group_by(column).order_by(column)
            )
            grouped[key] = [{column.name: value, 'count': count} for value, count in rows]
    return grouped


def seed_feedback(engine):
    """Insert the demo feedback rows. Returns how many were added."""
    with engine.begin() as conn:
        conn.execute(
            insert(feedback_table),
            [
                {
                    'source': source,
                    'content': content,
                    'sentiment': sentiment,
                    'category': category,
                    'urgency': urgency,
                }
                for source, content, sentiment, category, urgency in SEED_FEEDBACK
            ],
        )
    return len(SEED_FEEDBACK)


# ===================
# STAT OPERATIONS
# ===================

def upsert_stat(engine, stat_type, stat_value):
    """Store a stat, replacing any existing value for the same stat_type.

    The lookup and write share one transaction so there is at most one row
    per stat_type.
    """
    payload = to_json(stat_value)

    with engine.begin() as conn:
        existing = conn.execute(
            select(stats_table.c.id).where(stats_table.c.stat_type == stat_type)
        ).scalar()

        if existing is None:
            conn.execute(insert(stats_table).values(stat_type=stat_type, stat_value=payload))
        else:
            conn.execute(
                update(stats_table).where(stats_table.c.id == existing).values(stat_value=payload)
            )


def get_stat(engine, stat_type):
    """Look up one stat row. Returns None if it doesn't exist."""
    with engine.connect() as conn:
        row = conn.execute(select(stats_table).where(stats_table.c.stat_type == stat_type)).first()
    return _serialize_row(row) if row is not None else None


# ===================
# WORKFLOW OPERATIONS
# ===================

def create_run(engine, run_id, params):
    with engine.begin() as conn:
        conn.execute(insert(runs_table).values(id=run_id, status='queued', params=to_json(params)))


def get_run(engine, run_id):
    with engine.connect() as conn:
        row = conn.execute(select(runs_table).where(runs_table.c.id == run_id)).first()
    return _serialize_row(row) if row is not None else None


def _lease_cutoff(lease_seconds):
    return _utcnow() - timedelta(seconds=lease_seconds)


def _claimable(lease_seconds):
    """Queued runs, or running runs nobody has touched within the lease"""
    return or_(
        runs_table.c.status == 'queued',
        and_(
            runs_table.c.status == 'running',
            runs_table.c.updated_at < _lease_cutoff(lease_seconds),
        ),
    )


def claim_run(engine, run_id, lease_seconds=RUN_LEASE_SECONDS):
    """Mark a run as running if nobody else holds it.

    The check and the write are a single conditional UPDATE, so two workers
    racing for the same run cannot both win. Returns True if claimed.
    """
    with engine.begin() as conn:
        result = conn.execute(
            update(runs_table)
            .where(runs_table.c.id == run_id, _claimable(lease_seconds))
            .values(status='running', updated_at=_utcnow())
        )
    return result.rowcount == 1


def set_run_status(engine, run_id, status, output=None, error=None, expected_status=None):
    """Update a run's status. Returns False if expected_status didn't match."""
    values = {'status': status, 'updated_at': _utcnow()}
    if output is not None:
        values['output'] = to_json(output)
    if error is not None:
        values['error'] = error

    query = update(runs_table).where(runs_table.c.id == run_id)
    if expected_status is not None:
        query = query.where(runs_table.c.status == expected_status)

    with engine.begin() as conn:
        result = conn.execute(query.values(**values))
    return result.rowcount == 1


def get_unfinished_run_ids(engine, lease_seconds=RUN_LEASE_SECONDS):
    """Queued runs and abandoned running runs, oldest first"""
    query = (
        select(runs_table.c.id)
        .where(_claimable(lease_seconds))
        .order_by(runs_table.c.created_at)
    )
    with engine.connect() as conn:
        return list(conn.execute(query).scalars())


def get_step_output(engine, run_id, name):
    """Checkpointed step row, or None if the step never completed"""
    query = select(steps_table).where(steps_table.c.run_id == run_id, steps_table.c.name == name)
    with engine.connect() as conn:
        row = conn.execute(query).first()
    return _serialize_row(row) if row is not None else None


def save_step_output(engine, run_id, name, output, attempts):
    """Checkpoint a step result. Raises IntegrityError if it is already saved."""
    with engine.begin() as conn:
        conn.execute(
            insert(steps_table).values(run_id=run_id, name=name, output=to_json(output), attempts=attempts)
        )
        # Each checkpoint renews the run's lease
        conn.execute(update(runs_table).where(runs_table.c.id == run_id).values(updated_at=_utcnow()))
