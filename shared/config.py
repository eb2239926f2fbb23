# Feedback Shared Config
# Central configuration for the feedback service

import os

# Database
DATABASE_URL = os.environ.get('DATABASE_URL', 'sqlite:///feedback.db')

# Anthropic
ANTHROPIC_API_KEY = os.environ.get('ANTHROPIC_API_KEY')
ANTHROPIC_MODEL = os.environ.get('ANTHROPIC_MODEL', 'claude-sonnet-4-20250514')
ANTHROPIC_MAX_TOKENS = int(os.environ.get('ANTHROPIC_MAX_TOKENS', 500))
ANTHROPIC_TEMPERATURE = float(os.environ.get('ANTHROPIC_TEMPERATURE', 0.2))
ANTHROPIC_TIMEOUT = float(os.environ.get('ANTHROPIC_TIMEOUT', 60.0))

# Query surface and alerts
RECENT_FEEDBACK_LIMIT = 50
ALERT_EXCERPT_LENGTH = 100

# Workflow runner
STEP_MAX_ATTEMPTS = int(os.environ.get('STEP_MAX_ATTEMPTS', 3))
STEP_RETRY_DELAY = float(os.environ.get('STEP_RETRY_DELAY', 1.0))
WORKFLOW_WORKERS = int(os.environ.get('WORKFLOW_WORKERS', 4))

# A running run untouched for this long is treated as abandoned
RUN_LEASE_SECONDS = float(os.environ.get('RUN_LEASE_SECONDS', 300))
