"""
Vault QA Services

Evaluators, scoring, scanning, repair and persistence sync for item documents.
"""
