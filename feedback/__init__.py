# Feedback Pipeline
# Flask app, classifier, pipeline steps and workflow runner
