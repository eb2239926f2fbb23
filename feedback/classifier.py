# Feedback Classifier
# Turns one piece of feedback into a sentiment/category/urgency classification

import os
import json

from anthropic import Anthropic
import httpx

from shared.config import (
    ANTHROPIC_API_KEY,
    ANTHROPIC_MODEL,
    ANTHROPIC_MAX_TOKENS,
    ANTHROPIC_TEMPERATURE,
    ANTHROPIC_TIMEOUT
)
from shared.helpers import strip_markdown_json

# Load prompt
PROMPT_PATH = os.path.join(os.path.dirname(__file__), 'prompt.txt')
with open(PROMPT_PATH, 'r') as f:
    CLASSIFIER_PROMPT = f.read()

CLASSIFICATION_FIELDS = ('sentiment', 'category', 'urgency', 'reason')

DEFAULT_CLASSIFICATION = {
    'sentiment': 'neutral',
    'category': 'unknown',
    'urgency': 'low',
    'reason': 'could not parse AI response'
}


class AnthropicGenerator:
    """Text generation backed by Claude.

    Called with an ordered list of role-tagged messages, returns the reply
    text. The Anthropic client is created on first use so the service can
    start without an API key.
    """

    def __init__(self, api_key=None, model=None, client=None):
        self.api_key = api_key or ANTHROPIC_API_KEY
        self.model = model or ANTHROPIC_MODEL
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = Anthropic(
                api_key=self.api_key,
                http_client=httpx.Client(timeout=ANTHROPIC_TIMEOUT, follow_redirects=True)
            )
        return self._client

    def __call__(self, messages):
        # Claude takes the system instruction separately from the conversation
        system = '\n\n'.join(m['content'] for m in messages if m['role'] == 'system')
        conversation = [m for m in messages if m['role'] != 'system']

        response = self.client.messages.create(
            model=self.model,
            max_tokens=ANTHROPIC_MAX_TOKENS,
            temperature=ANTHROPIC_TEMPERATURE,
            system=system,
            messages=conversation
        )
        return response.content[0].text


def build_messages(source, content):
    """Instruction and feedback as role-tagged messages"""
    return [
        {'role': 'system', 'content': CLASSIFIER_PROMPT},
        {'role': 'user', 'content': f'Source: {source}\nFeedback: {content}'}
    ]


def parse_classification(text):
    """Parse a model reply into a classification dict.

    The reply must be a JSON object (optionally fenced in markdown) with all
    four fields as strings. Values are passed through as returned, so a
    category outside bug/feature/question/complaint is kept.
    Returns None if the reply doesn't have that shape.
    """
    if not isinstance(text, str):
        return None

    try:
        data = json.loads(strip_markdown_json(text))
    except json.JSONDecodeError:
        return None

    if not isinstance(data, dict):
        return None

    for field in CLASSIFICATION_FIELDS:
        if not isinstance(data.get(field), str):
            return None

    return {field: data[field] for field in CLASSIFICATION_FIELDS}


def classify(generate, source, content):
    """Classify one piece of feedback. Never raises.

    Any failure, whether the model call itself or an unusable reply, falls
    back to DEFAULT_CLASSIFICATION.
    """
    try:
        reply = generate(build_messages(source, content))
    except Exception as e:
        print(f"Error calling classifier model: {e}")
        return dict(DEFAULT_CLASSIFICATION)

    classification = parse_classification(reply)
    if classification is None:
        print(f"Could not parse classifier reply: {reply!r:.200}")
        return dict(DEFAULT_CLASSIFICATION)

    return classification
