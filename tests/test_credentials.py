import pytest
from cryptography.fernet import Fernet

from cloudnet.errors import InternalError
from cloudnet.services.credentials import FernetCredentialDecryptor


def test_encrypt_then_decrypt():
    decryptor = FernetCredentialDecryptor(Fernet.generate_key().decode())
    token = decryptor.encrypt({"project_id": "proj-1"})
    assert "proj-1" not in token
    assert decryptor.decrypt(token) == {"project_id": "proj-1"}


def test_wrong_key_is_an_internal_error():
    token = FernetCredentialDecryptor(Fernet.generate_key().decode()).encrypt({"a": "b"})
    other = FernetCredentialDecryptor(Fernet.generate_key().decode())
    with pytest.raises(InternalError, match="Failed to decrypt credential"):
        other.decrypt(token)


def test_non_object_payload_is_rejected():
    key = Fernet.generate_key()
    token = Fernet(key).encrypt(b'["not", "a", "map"]').decode()
    with pytest.raises(InternalError):
        FernetCredentialDecryptor(key.decode()).decrypt(token)


def test_missing_key_is_reported():
    with pytest.raises(InternalError, match="not configured"):
        FernetCredentialDecryptor("").decrypt("anything")
