"""Encrypted JSON column type for service-account keys."""
import json
import os

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy import Text
from sqlalchemy.types import TypeDecorator


class EncryptedJSON(TypeDecorator):
    """Store a JSON document encrypted with Fernet.

    Dictionaries are serialized and encrypted on write, decrypted and parsed
    on read. The key comes from the ENCRYPTION_KEY environment variable
    (32 url-safe base64-encoded bytes).
    """

    impl = Text
    cache_ok = True

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        key = os.getenv("ENCRYPTION_KEY")
        if not key:
            raise ValueError("ENCRYPTION_KEY environment variable must be set")
        self._fernet = Fernet(key.encode())

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if not isinstance(value, dict):
            raise TypeError(f"EncryptedJSON requires a dict value, got {type(value)}")
        return self._fernet.encrypt(json.dumps(value, sort_keys=True).encode()).decode()

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        try:
            plaintext = self._fernet.decrypt(value.encode())
        except InvalidToken as error:
            raise ValueError("Stored value could not be decrypted with ENCRYPTION_KEY") from error
        return json.loads(plaintext)
