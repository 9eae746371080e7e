"""
Question bank loading and candidate-side filtering.

Banks are plain JSON or Fernet-encrypted files. Encrypted banks use either a
key file (raw Fernet key) or a password; password-based files start with
b'SALT' followed by a 16-byte salt.
"""

import base64
import json
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .models import EngineConfig, Question, QuestionType

SALT_PREFIX = b'SALT'
SALT_LENGTH = 16


def derive_key_from_password(password: str, salt: bytes) -> bytes:
    """Derive a Fernet key from a password using PBKDF2."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=480000,  # OWASP recommendation for 2024
    )
    key_material = kdf.derive(password.encode('utf-8'))
    return base64.urlsafe_b64encode(key_material)


def encrypt_bank(plaintext: bytes, key: Optional[bytes] = None, password: Optional[str] = None) -> bytes:
    """
    Encrypt a serialized bank with a Fernet key or a password.

    Password-based output is prefixed with SALT_PREFIX and a random salt so
    decrypt_bank() can derive the same key.
    """
    if password is not None:
        salt = os.urandom(SALT_LENGTH)
        return SALT_PREFIX + salt + Fernet(derive_key_from_password(password, salt)).encrypt(plaintext)
    if key is None:
        raise ValueError("Either a key or a password is required")
    return Fernet(key).encrypt(plaintext)


def decrypt_bank(encrypted_data: bytes, key_input: str) -> dict:
    """
    Decrypt an encrypted bank and parse its JSON.

    Raises:
        ValueError: On a wrong key/password, a corrupted file or invalid JSON
    """
    if encrypted_data.startswith(SALT_PREFIX):
        salt = encrypted_data[len(SALT_PREFIX):len(SALT_PREFIX) + SALT_LENGTH]
        token = encrypted_data[len(SALT_PREFIX) + SALT_LENGTH:]
        key = derive_key_from_password(key_input, salt)
    else:
        token = encrypted_data
        key = key_input.strip().encode('utf-8')

    try:
        plaintext = Fernet(key).decrypt(token)
    except InvalidToken:
        raise ValueError("Decryption failed: invalid key/password or corrupted file")
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid encryption key: {e}")

    try:
        return json.loads(plaintext)
    except json.JSONDecodeError as e:
        raise ValueError(f"Decrypted bank is not valid JSON: {e}")


@dataclass
class QuestionBank:
    """Represents the entire question bank."""
    group: str
    version: str
    questions: List[Question]
    config: Optional[EngineConfig] = None

    @staticmethod
    def from_dict(data: dict) -> 'QuestionBank':
        """
        Create a QuestionBank from a dictionary.

        Also accepts a bundle {"config": {...}, "bank": {...}}.
        """
        config = None
        if "config" in data and "bank" in data:
            config = EngineConfig.from_dict(data["config"])
            is_valid, err = config.validate()
            if not is_valid:
                raise ValueError(f"Invalid bundled config: {err}")
            data = data["bank"]

        return QuestionBank(
            group=data.get('group', ''),
            version=str(data.get('version', '')),
            questions=[Question.from_dict(q) for q in data.get('questions', [])],
            config=config
        )

    def of_type(self, kind: QuestionType) -> List[Question]:
        return [q for q in self.questions if q.type == kind]


def load_bank(bank_path: Path, key_input: Optional[str] = None) -> QuestionBank:
    """
    Load a question bank from disk.

    Args:
        bank_path: A .json file, or an encrypted file of any other extension
        key_input: Fernet key or password for encrypted banks

    Raises:
        ValueError: If the bank cannot be read, decrypted or parsed
    """
    bank_path = Path(bank_path)
    try:
        if bank_path.suffix.lower() == '.json':
            with open(bank_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        else:
            if not key_input:
                raise ValueError("Encrypted bank requires a key or password")
            with open(bank_path, 'rb') as f:
                data = decrypt_bank(f.read(), key_input)
    except OSError as e:
        raise ValueError(f"Cannot read bank '{bank_path}': {e}")
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in bank '{bank_path}': {e}")

    try:
        return QuestionBank.from_dict(data)
    except (KeyError, TypeError) as e:
        raise ValueError(f"Malformed bank '{bank_path}': {e}")


def is_visible_to(question: Question, candidate_id: str, server_now: datetime) -> bool:
    """Assignee and scheduling-window check against trusted time."""
    if question.assigned_to and candidate_id not in question.assigned_to:
        return False
    if question.start_at is not None and question.start_at > server_now:
        return False
    if question.end_at is not None and question.end_at < server_now:
        return False
    return True


def filter_questions(
    questions: List[Question],
    candidate_id: str,
    server_now: datetime,
    kind: Optional[QuestionType] = None
) -> List[Question]:
    """Questions the candidate may take right now, in bank order."""
    return [
        q for q in questions
        if (kind is None or q.type == kind) and is_visible_to(q, candidate_id, server_now)
    ]


def earliest_deadline(questions: List[Question]) -> Optional[datetime]:
    """The earliest end_at among questions, or None if none has one."""
    ends = [q.end_at for q in questions if q.end_at is not None]
    return min(ends) if ends else None
