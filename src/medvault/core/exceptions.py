"""
Exceptions for MedVault
Everything raised on purpose derives from MedVaultError so callers have one thing to catch
"""


class MedVaultError(Exception):
    # general container for errors
    pass


class ConfigurationError(MedVaultError):
    # raised when the master secret (or another required setting) is missing
    pass


class KeyUnwrapError(MedVaultError):
    # raised when a user key envelope is malformed or fails authentication
    pass


class DecryptionError(MedVaultError):
    # raised on tag mismatch or malformed ciphertext / iv
    pass


class EncodingError(DecryptionError):
    # raised when decrypted bytes are not valid UTF-8 or not valid JSON
    pass


class StorageError(MedVaultError):
    # raised if storage (disk or database) fails in some way
    pass


class RecordNotFoundError(StorageError):
    # raised when a record or stored file DNE (or belongs to another user)
    pass


class FileTooLargeError(StorageError):
    # raised when an upload is above the configured size cap
    pass


class UserNotFoundError(MedVaultError):
    # raised when the user DNE in the DB
    pass


class UserExistsError(MedVaultError):
    # raised when registering an email twice
    pass


class IntegrityCheckFailedError(MedVaultError):
    # raised on a plaintext hash mismatch
    pass
