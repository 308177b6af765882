"""db/ -- Engine lifecycle and the unit-of-work boundary for SecureCMS.

Layer rule: db/metadata.py imports nothing from the project. db/database.py
imports the store modules so it can bind their repositories to one
connection; the store modules import only db/metadata.py.
"""
