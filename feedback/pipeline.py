# Feedback Pipeline
# classify -> store -> update stats -> check urgency, one durable step each

from shared.config import ALERT_EXCERPT_LENGTH
from shared.helpers import truncate
from shared.database import (
    insert_feedback,
    count_feedback_by_category,
    upsert_stat
)

from .classifier import classify


def persist(engine, item, classification, run_id=None):
    """Store classified feedback. Returns the record id."""
    return insert_feedback(
        engine,
        source=item['source'],
        content=item['content'],
        classification=classification,
        run_id=run_id
    )


def update_aggregate(engine, category):
    """Recompute the running count for a category.

    The count comes from a fresh query rather than an increment, so running
    this twice without a new insert leaves the same value.
    """
    count = count_feedback_by_category(engine, category)
    upsert_stat(engine, f'category_{category}', {'count': count})
    return count


def check_urgency(classification, source, content):
    """Decide whether this feedback needs an alert"""
    if classification.get('urgency') == 'high':
        return {
            'alert': True,
            'message': f"High urgency {classification.get('category')} detected from {source}",
            'excerpt': truncate(content, ALERT_EXCERPT_LENGTH)
        }
    return {'alert': False}


class FeedbackWorkflow:
    """The feedback pipeline as a workflow.

    Takes the store engine and the text generation callable explicitly;
    nothing is read from globals while a run executes.
    """

    def __init__(self, engine, generate):
        self.engine = engine
        self.generate = generate

    def run(self, params, step):
        source = params['source']
        content = params['content']

        classification = step.do(
            'analyze-feedback',
            lambda: classify(self.generate, source, content)
        )

        feedback_id = step.do(
            'store-feedback',
            lambda: persist(self.engine, params, classification, run_id=step.run_id)
        )

        # Must follow store-feedback so the count includes this record
        step.do(
            'update-stats',
            lambda: update_aggregate(self.engine, classification['category'])
        )

        alert = step.do(
            'check-urgency',
            lambda: check_urgency(classification, source, content)
        )

        if alert['alert']:
            print(f"ALERT: {alert['message']}: {alert['excerpt']}")

        return {
            'success': True,
            'classification': classification,
            'feedbackId': feedback_id,
            'alert': alert
        }
