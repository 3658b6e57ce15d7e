import os
import base64

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from argon2 import PasswordHasher
from argon2.exceptions import VerificationError, InvalidHashError


class CryptoManager:
    """
    Password-style hashing (Argon2id) for passwords and refresh tokens,
    plus AES-256-GCM encryption for TOTP secrets at rest.
    """

    def __init__(self, settings):
        # Argon2id - resistant to GPU cracking and side-channel attacks
        self.hasher = PasswordHasher(
            time_cost=settings.ARGON2_TIME_COST,
            memory_cost=settings.ARGON2_MEMORY_COST,
            parallelism=settings.ARGON2_PARALLELISM,
            hash_len=settings.ARGON2_HASH_LENGTH,
            salt_len=settings.ARGON2_SALT_LENGTH,
        )
        self.key = self._load_key(settings)

    @staticmethod
    def _load_key(settings) -> bytes:
        if settings.DATA_ENCRYPTION_KEY:
            try:
                key = base64.urlsafe_b64decode(settings.DATA_ENCRYPTION_KEY)
            except (ValueError, TypeError) as e:
                raise ValueError(f"Invalid Encryption Key configuration: {e}")
            if len(key) != 32:
                raise ValueError("Key must be 32 bytes (256 bits) for AES-256")
            return key
        return HKDF(
            algorithm=hashes.SHA256(),
            length=32,
            salt=None,
            info=b'igrotrend-auth data encryption',
        ).derive(settings.JWT_SECRET_KEY.encode())

    def hash_secret(self, secret: str) -> str:
        return self.hasher.hash(secret)

    def verify_secret(self, digest: str, secret: str) -> bool:
        try:
            return self.hasher.verify(digest, secret)
        except (VerificationError, InvalidHashError):
            return False

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypts data using AES-GCM.
        IV is generated randomly for every operation.
        Returns: iv_hex:ciphertext_hex:tag_hex
        """
        iv = os.urandom(12)  # NIST recommended IV length for GCM
        encryptor = Cipher(algorithms.AES(self.key), modes.GCM(iv)).encryptor()
        ciphertext = encryptor.update(plaintext.encode()) + encryptor.finalize()
        return f"{iv.hex()}:{ciphertext.hex()}:{encryptor.tag.hex()}"

    def decrypt(self, encrypted_payload: str) -> str:
        """Decrypts AES-GCM payload; the tag check rejects tampering."""
        try:
            iv_hex, ct_hex, tag_hex = encrypted_payload.split(':')
            decryptor = Cipher(
                algorithms.AES(self.key),
                modes.GCM(bytes.fromhex(iv_hex), bytes.fromhex(tag_hex)),
            ).decryptor()
            return (decryptor.update(bytes.fromhex(ct_hex)) + decryptor.finalize()).decode()
        except (ValueError, InvalidTag):
            raise ValueError("Decryption failed or data tampered")
