"""alsupdate: Batch model-update stage for an online ALS recommender.

This package periodically retrains a latent-factor recommendation model from
a stream of (user, item, score, timestamp) events, selects the best
hyperparameters on a time-based held-out split, persists the factor matrices
and publishes per-entity factor updates to a serving layer.

Modules:
    api: FastAPI service exposing the active model and pipeline metrics
    recommender: Parsing, aggregation, training, evaluation and publishing
"""

__version__ = "0.1.0"
