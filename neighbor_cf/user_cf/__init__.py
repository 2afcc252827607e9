"""User-user collaborative filtering over a sparse rating matrix.

Core idea:
- Score every pair of users by Pearson correlation and keep each user's top-k neighbors
- Predict a rating as a bias baseline (global, user and item means) plus the
  similarity-weighted residuals of neighbors who rated the item
- When too few neighbors rated the item, fall back to the user's ratings of items
  that share an attribute with it
"""
