# Feedback Workflow Runner
# Durable step execution: every finished step is checkpointed in the database,
# so a run that is restarted skips straight past the steps it already did.

import time
import uuid
import traceback
from concurrent.futures import ThreadPoolExecutor

from sqlalchemy.exc import IntegrityError

from shared.config import STEP_MAX_ATTEMPTS, STEP_RETRY_DELAY, WORKFLOW_WORKERS, RUN_LEASE_SECONDS
from shared.helpers import from_json
from shared.database import (
    create_run,
    get_run,
    claim_run,
    set_run_status,
    get_unfinished_run_ids,
    get_step_output,
    save_step_output
)


class WorkflowError(Exception):
    """Base class for workflow runner errors"""


class StepFailed(WorkflowError):
    """A step kept failing after every retry"""

    def __init__(self, name, attempts, cause):
        super().__init__(f"Step '{name}' failed after {attempts} attempt(s): {cause}")
        self.name = name
        self.attempts = attempts
        self.cause = cause


class Step:
    """Handle passed to a workflow's run() for executing named steps"""

    def __init__(self, engine, run_id, max_attempts=STEP_MAX_ATTEMPTS, retry_delay=STEP_RETRY_DELAY):
        self.engine = engine
        self.run_id = run_id
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay

    def do(self, name, fn):
        """Run fn as the step called `name` and return its result.

        A step that already completed for this run is not executed again; its
        checkpointed result is returned instead. Otherwise fn is retried with
        exponential backoff, up to max_attempts calls in total. Results must
        be JSON-serializable.
        """
        checkpoint = get_step_output(self.engine, self.run_id, name)
        if checkpoint is not None:
            print(f"[{self.run_id}] Step '{name}' already complete, replaying result")
            return from_json(checkpoint['output'])

        attempt = 0
        while True:
            attempt += 1
            try:
                result = fn()
                break
            except Exception as e:
                print(f"[{self.run_id}] Step '{name}' attempt {attempt}/{self.max_attempts} failed: {e}")
                if attempt >= self.max_attempts:
                    raise StepFailed(name, attempt, e) from e
                time.sleep(self.retry_delay * (2 ** (attempt - 1)))

        try:
            save_step_output(self.engine, self.run_id, name, result, attempt)
        except IntegrityError:
            # Another execution of this run checkpointed the step first; its result wins
            checkpoint = get_step_output(self.engine, self.run_id, name)
            if checkpoint is None:
                raise
            print(f"[{self.run_id}] Step '{name}' was checkpointed concurrently, using stored result")
            return from_json(checkpoint['output'])

        return result


class WorkflowHost:
    """Creates workflow runs and executes them in the background.

    `workflow` is any object with a run(params, step) method. Runs are
    persisted before they are scheduled, so resume_pending() can pick them
    up again after a crash. A run is claimed before it executes; a running
    run is only taken over once its lease has lapsed.
    """

    def __init__(self, engine, workflow, executor=None,
                 max_attempts=STEP_MAX_ATTEMPTS, retry_delay=STEP_RETRY_DELAY,
                 lease_seconds=RUN_LEASE_SECONDS):
        self.engine = engine
        self.workflow = workflow
        self.executor = executor or ThreadPoolExecutor(
            max_workers=WORKFLOW_WORKERS, thread_name_prefix='workflow'
        )
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.lease_seconds = lease_seconds

    def _submit(self, run_id):
        future = self.executor.submit(self.execute, run_id)
        future.add_done_callback(lambda done: self._report_failure(run_id, done))
        return future

    @staticmethod
    def _report_failure(run_id, future):
        error = future.exception()
        if error is not None:
            print(f"[{run_id}] Workflow execution crashed: {error!r}")
            traceback.print_exception(type(error), error, error.__traceback__)

    def create(self, params):
        """Persist a new run and schedule it. Returns the run id immediately."""
        run_id = str(uuid.uuid4())
        create_run(self.engine, run_id, params)
        self._submit(run_id)
        print(f"[{run_id}] Workflow run queued")
        return run_id

    def execute(self, run_id):
        """Execute (or resume) one run to a terminal state"""
        run = get_run(self.engine, run_id)
        if run is None:
            print(f"[{run_id}] Workflow run not found")
            return None
        if run['status'] in ('complete', 'errored'):
            return from_json(run['output'])

        if not claim_run(self.engine, run_id, self.lease_seconds):
            print(f"[{run_id}] Workflow run is held by another worker, skipping")
            return None

        step = Step(self.engine, run_id, self.max_attempts, self.retry_delay)

        try:
            output = self.workflow.run(from_json(run['params']), step)
        except Exception as e:
            print(f"[{run_id}] Workflow run failed: {e}")
            traceback.print_exc()
            set_run_status(self.engine, run_id, 'errored', error=str(e), expected_status='running')
            return None

        if not set_run_status(self.engine, run_id, 'complete', output=output, expected_status='running'):
            print(f"[{run_id}] Workflow run was already finished elsewhere")
        else:
            print(f"[{run_id}] Workflow run complete")
        return output

    def resume_pending(self):
        """Reschedule queued runs and running runs whose lease has lapsed"""
        run_ids = get_unfinished_run_ids(self.engine, self.lease_seconds)
        for run_id in run_ids:
            self._submit(run_id)
        if run_ids:
            print(f"Resumed {len(run_ids)} unfinished workflow run(s)")
        return run_ids

    def get_status(self, run_id):
        """Status of a run, or None if the id is unknown"""
        run = get_run(self.engine, run_id)
        if run is None:
            return None
        return {
            'id': run['id'],
            'status': run['status'],
            'output': from_json(run['output']),
            'error': run['error'],
            'createdAt': run['created_at'],
            'updatedAt': run['updated_at']
        }
