"""audit/ -- Append-only record of state-changing operations.

Layer rule: audit/ imports core/ and db/metadata.py only. Services in auth/
and content/ write through AuditRecorder inside their unit of work; nothing
outside this package touches the audit_logs table.
"""
