"""Model-update pipeline for the ALS recommender.

This module contains record parsing, score aggregation, the time-based
train/held-out split, the factorization model builder and evaluator, the
factor-matrix codec and the incremental update publisher.
"""
