"""
Vault QA: item-bank quality assurance and repair for NCLEX-style exam items.
"""
