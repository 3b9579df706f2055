"""
Database module - token persistence on PostgreSQL or tinydb
"""
