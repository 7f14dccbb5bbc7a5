"""JLPT practice backend: question pools, practice sessions and daily progress."""
