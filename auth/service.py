"""
auth/service.py -- Registration, login and subject lifecycle.

AuthService composes the pure components (CryptoBox, CredentialStore,
SessionIssuer, PermissionEvaluator) with the repositories of one unit of
work. Every write it makes is audited in the same transaction.

Security:
  [C1] Timing equalization: authenticate() runs bcrypt even when the username
       does not exist, so response time does not reveal which usernames are
       registered.
  [C2] Login failures raise AuthenticationError with one generic message.
       Neither the exception nor the log line says whether the username or
       the password was wrong.
  [C3] SSN and phone are encrypted before the subject row is built. The
       plaintext never reaches the repository, the audit log or a log line.
"""

from __future__ import annotations

import logging
from datetime import datetime

from audit.models import AuditActor, AuditEntry, AuditOperation, snapshot
from auth.crypto import CryptoBox
from auth.models import Subject
from auth.passwords import CredentialStore
from auth.permissions import PermissionEvaluator
from auth.tokens import SessionIssuer
from core.errors import AuthenticationError, ConflictError, NotFoundError

logger = logging.getLogger("securecms.auth")

_INVALID_LOGIN = "Invalid username or password."

# Never written to the audit log.
SUBJECT_AUDIT_EXCLUDE = ("hashed_password",)


def subject_snapshot(subject: Subject) -> dict:
    return snapshot(subject, exclude=SUBJECT_AUDIT_EXCLUDE)


class AuthService:
    """Usage:
    service = AuthService(db, crypto, credentials, issuer)
    subject = service.register("alice", "alice@example.com", "s3cret-pass", ssn="123-45-6789")
    token, expires_at, subject, roles = service.login("alice", "s3cret-pass")
    """

    def __init__(
        self,
        db,
        crypto: CryptoBox,
        credentials: CredentialStore,
        issuer: SessionIssuer,
        default_role: str = "Author",
    ) -> None:
        self._db = db
        self.crypto = crypto
        self.credentials = credentials
        self.issuer = issuer
        self.default_role = default_role

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        username: str,
        email: str,
        password: str,
        full_name: str | None = None,
        ssn: str | None = None,
        phone: str | None = None,
        role_name: str | None = None,
        actor: AuditActor | None = None,
    ) -> Subject:
        """Create a subject and assign it a role, all in one unit of work.

        role_name defaults to the configured default role. If that role does
        not exist the subject is created without roles.

        Raises ConflictError if the username or email is taken.
        """
        subject = Subject(
            username=username,
            email=email,
            hashed_password=self.credentials.hash(password),
            full_name=full_name,
            encrypted_ssn=self.crypto.encrypt(ssn) or None,
            encrypted_phone=self.crypto.encrypt(phone) or None,
        )
        role_name = role_name or self.default_role

        with self._db.unit_of_work(write=True) as uow:
            if uow.subjects.get_by_username(username) is not None:
                raise ConflictError("Username already exists")
            if uow.subjects.get_by_email(email) is not None:
                raise ConflictError("Email already exists")

            uow.subjects.create(subject)
            # Registration is a self-action: the new subject is the actor.
            self_actor = AuditActor(
                subject_id=subject.id,
                username=subject.username,
                ip_address=actor.ip_address if actor else None,
                user_agent=actor.user_agent if actor else None,
            )
            uow.audit.record(
                AuditEntry("users", AuditOperation.CREATE, self_actor, new_values=subject_snapshot(subject))
            )

            role = uow.rbac.get_role_by_name(role_name)
            if role is None:
                logger.warning("Role %r does not exist; %s registered without roles", role_name, username)
            else:
                assignment = uow.rbac.assign(subject.id, role.id)
                uow.audit.record(
                    AuditEntry("user_roles", AuditOperation.CREATE, self_actor, new_values=snapshot(assignment))
                )
            uow.commit()

        logger.info("Registered subject %s (id=%s)", username, subject.id)
        return subject

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def authenticate(self, username: str, password: str) -> Subject | None:
        """Return the active subject whose password matches, else None [C1].

        Always runs exactly one bcrypt check, inside a read unit so the
        check never holds the write lock.
        """
        with self._db.unit_of_work() as uow:
            subject = uow.subjects.get_by_username(username)
        if subject is None or not subject.hashed_password:
            self.credentials.burn(password)
            return None
        if not self.credentials.verify(password, subject.hashed_password):
            return None
        if not subject.is_active:
            return None
        return subject

    def login(
        self,
        username: str,
        password: str,
        actor: AuditActor | None = None,
        now: datetime | None = None,
    ) -> tuple[str, datetime, Subject, list[str]]:
        """Authenticate, stamp last-login and issue a token [C2].

        Returns (token, expires_at, subject, role_names).
        Raises AuthenticationError on any failure.
        """
        verified = self.authenticate(username, password)
        if verified is None:
            logger.info("Failed login attempt")
            raise AuthenticationError(_INVALID_LOGIN)

        with self._db.unit_of_work(write=True) as uow:
            # Re-read under the write lock: the subject may have been
            # deactivated while bcrypt ran.
            subject = uow.subjects.get_by_id(verified.id)
            if subject is None or not subject.is_active:
                logger.info("Failed login attempt")
                raise AuthenticationError(_INVALID_LOGIN)

            before = subject_snapshot(subject)
            subject.last_login = uow.subjects.update_last_login(subject.id)
            login_actor = AuditActor(
                subject_id=subject.id,
                username=subject.username,
                ip_address=actor.ip_address if actor else None,
                user_agent=actor.user_agent if actor else None,
            )
            uow.audit.record(
                AuditEntry(
                    "users",
                    AuditOperation.UPDATE,
                    login_actor,
                    old_values=before,
                    new_values=subject_snapshot(subject),
                )
            )
            roles = uow.rbac.role_names_for_subject(subject.id)
            uow.commit()

        token, expires_at = self.issuer.issue(subject, roles, now=now)
        logger.info("Subject %s logged in", subject.id)
        return token, expires_at, subject, roles

    # ------------------------------------------------------------------
    # Subject lifecycle
    # ------------------------------------------------------------------

    def get_subject(self, subject_id: int) -> Subject | None:
        with self._db.unit_of_work() as uow:
            return uow.subjects.get_by_id(subject_id)

    def list_subjects(self) -> list[Subject]:
        with self._db.unit_of_work() as uow:
            return uow.subjects.list_all()

    def deactivate(self, subject_id: int, actor: AuditActor) -> Subject:
        """Mark a subject inactive. Subjects are never deleted.

        Deactivating an already inactive subject is a no-op and writes no
        audit record. Raises NotFoundError for an unknown id.
        """
        with self._db.unit_of_work(write=True) as uow:
            subject = uow.subjects.get_by_id(subject_id)
            if subject is None:
                raise NotFoundError("Subject", subject_id)
            if not subject.is_active:
                return subject
            before = subject_snapshot(subject)
            uow.subjects.deactivate(subject_id)
            subject.is_active = False
            uow.audit.record(
                AuditEntry(
                    "users",
                    AuditOperation.UPDATE,
                    actor,
                    old_values=before,
                    new_values=subject_snapshot(subject),
                )
            )
            uow.commit()
        logger.info("Subject %s deactivated by %s", subject_id, actor.username)
        return subject

    def reveal_sensitive(self, subject_id: int) -> dict[str, str]:
        """Decrypt a subject's stored SSN and phone.

        Raises NotFoundError for an unknown id and DecryptionError if the
        stored ciphertext cannot be read with this installation's key.
        """
        with self._db.unit_of_work() as uow:
            subject = uow.subjects.get_by_id(subject_id)
        if subject is None:
            raise NotFoundError("Subject", subject_id)
        return {
            "ssn": self.crypto.decrypt(subject.encrypted_ssn),
            "phone": self.crypto.decrypt(subject.encrypted_phone),
        }

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    def permissions_for(self, subject_id: int) -> list[str]:
        """Sorted effective "Resource:Action" strings for the subject."""
        with self._db.unit_of_work() as uow:
            return sorted(PermissionEvaluator(uow.rbac).list_permissions(subject_id))

    def has_permission(self, subject_id: int, resource: str, action: str) -> bool:
        with self._db.unit_of_work() as uow:
            return PermissionEvaluator(uow.rbac).has_permission(subject_id, resource, action)
