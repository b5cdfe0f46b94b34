from pydantic import BaseModel


class Credential(BaseModel):
    """A stored provider credential. ``encrypted_data`` is never decrypted here."""

    id: str
    provider: str
    encrypted_data: str
    name: str = ""
