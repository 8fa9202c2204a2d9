"""OS keystore integration for the master secret, via keyring.

Storing the secret in the OS keystore is an opt-in alternative to the
``MASTER_ENCRYPTION_KEY`` environment variable. Do not assume keyring provides
hardware-backed security on all platforms; :func:`assess_keyring_backend`
flags the obviously unsafe backends.
"""
import logging
from typing import NamedTuple, Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from medvault.core.exceptions import ConfigurationError


logger = logging.getLogger(__name__)


# module prefixes of the platform credential stores keyring ships with
OS_CREDENTIAL_STORES = (
    "keyring.backends.macOS",
    "keyring.backends.Windows",
    "keyring.backends.SecretService",
    "keyring.backends.libsecret",
    "keyring.backends.kwallet",
)

# backends that keep the secret readable on disk, or do not keep it at all
REFUSED_MARKERS = ("plaintext", "uncrypted", "null", "fail")


class BackendAssessment(NamedTuple):
    secure: bool
    backend: str
    reason: str


def _backend_label(backend) -> str:
    cls = type(backend)
    return f"{cls.__module__}.{cls.__qualname__}"


def assess_keyring_backend() -> BackendAssessment:
    """Decide whether the active keyring backend may hold the master secret.

    Platform credential stores are trusted. Plaintext, null and fail backends
    (and anything keyring itself ranks at priority 0 or below) are refused.
    Other backends are allowed but reported as unrecognised.
    """
    try:
        backend = keyring.get_keyring()
    except KeyringError as e:
        return BackendAssessment(False, "unavailable", f"no keyring backend could be loaded: {e}")

    label = _backend_label(backend)
    priority = getattr(backend, "priority", None)

    if any(marker in label.lower() for marker in REFUSED_MARKERS):
        return BackendAssessment(False, label, "backend does not encrypt stored secrets")
    if priority is not None and priority <= 0:
        return BackendAssessment(False, label, f"backend is not usable on this system (priority={priority})")
    if label.startswith(OS_CREDENTIAL_STORES):
        return BackendAssessment(True, label, "OS credential store")
    return BackendAssessment(True, label, "unrecognised backend; it must protect the master secret itself")


def save_secret(service: str, account: str, secret: str, force: bool = False) -> None:
    """Persist the master secret under (service, account).

    Refuses to write to a backend that looks insecure unless ``force`` is set.
    """
    if not secret:
        raise ConfigurationError("refusing to store an empty master secret")
    if not force:
        assessment = assess_keyring_backend()
        if not assessment.secure:
            raise ConfigurationError(
                f"refusing to persist master secret to {assessment.backend}: {assessment.reason}; "
                "pass force=True to override if you understand the risk"
            )
        if not assessment.backend.startswith(OS_CREDENTIAL_STORES):
            logger.warning("Storing master secret in %s: %s", assessment.backend, assessment.reason)
    keyring.set_password(service, account, secret)
    logger.info("Stored master secret in OS keystore (%s/%s)", service, account)


def load_secret(service: str, account: str) -> Optional[str]:
    """Return the stored secret, or None when nothing is stored."""
    return keyring.get_password(service, account)


def delete_secret(service: str, account: str) -> bool:
    """Remove the secret. Returns False if there was nothing to delete."""
    try:
        keyring.delete_password(service, account)
    except PasswordDeleteError:
        logger.debug("No master secret to delete for %s/%s", service, account)
        return False
    return True
