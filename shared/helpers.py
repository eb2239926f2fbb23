# Feedback Shared Helpers
# Utility functions used across the feedback service

import json


def strip_markdown_json(content):
    """Strip markdown code blocks from Claude's JSON response"""
    content = content.strip()
    if content.startswith('```'):
        # Remove first line (```json or ```)
        content = content.split('\n', 1)[1] if '\n' in content else content[3:]
    if content.endswith('```'):
        # Remove trailing ```
        content = content.rsplit('```', 1)[0]
    return content.strip()


def truncate(text, length):
    """Fixed-length prefix of text. No ellipsis, no word boundaries."""
    return text[:length]


def to_json(value):
    """Serialize a value for storage in a text column"""
    return json.dumps(value, separators=(',', ':'))


def from_json(text):
    """Inverse of to_json. Empty columns come back as None."""
    if text is None or text == '':
        return None
    return json.loads(text)
