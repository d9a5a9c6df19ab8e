"""Encrypted, TTL'd persistence of per-user X credentials in Redis"""
import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import ValidationError
from redis.exceptions import RedisError

from sharekit.core.exceptions import (
    EncryptionError, InvalidKeyError, KeyRotationError
)
from sharekit.db.redis import TOKENS_PREFIX, scan_keys, token_key
from sharekit.schemas.credentials import CredentialRecord, StoredTokenEntry
from sharekit.utils.encryption import KEY_SIZE, EncryptedEnvelope, EnvelopeCipher

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("security")

DEFAULT_TOKEN_TTL = 24 * 60 * 60  # seconds


@dataclass
class KeyRotationResult:
    migrated: List[str] = field(default_factory=list)


class TokenStorage:
    """Stores one encrypted CredentialRecord per user under tokens:{userId}

    Args:
        redis_client: Async Redis client (decode_responses=True)
        cipher: Envelope cipher holding the active key
        default_ttl: Expiry used for records without expires_at
    """

    def __init__(self, redis_client, cipher: EnvelopeCipher, default_ttl: int = DEFAULT_TOKEN_TTL):
        self._redis = redis_client
        self._cipher = cipher
        self._default_ttl = default_ttl
        # Serializes reads and writes against key rotation (single process)
        self._lock = asyncio.Lock()

    def _ttl_for(self, record: CredentialRecord) -> int:
        remaining = record.seconds_until_expiry()
        if remaining is None:
            return self._default_ttl
        return max(1, math.ceil(remaining))

    def _seal(self, user_id: str, record: CredentialRecord, cipher: EnvelopeCipher) -> str:
        envelope = cipher.encrypt(record.model_dump_json())
        entry = StoredTokenEntry(
            ciphertext=envelope.ciphertext,
            iv=envelope.iv,
            authTag=envelope.auth_tag,
            userId=user_id,
            username=record.username,
            createdAt=record.created_at,
        )
        return entry.model_dump_json()

    def _open(self, raw: str, cipher: EnvelopeCipher) -> CredentialRecord:
        try:
            entry = StoredTokenEntry.model_validate_json(raw)
        except ValidationError as e:
            raise EncryptionError(f"Corrupt token envelope: {e.error_count()} error(s)")
        plaintext = cipher.decrypt(EncryptedEnvelope(entry.ciphertext, entry.iv, entry.authTag))
        try:
            return CredentialRecord.model_validate_json(plaintext)
        except ValidationError as e:
            raise EncryptionError(f"Decrypted token record is malformed: {e.error_count()} error(s)")

    # Callers must hold self._lock for the underscored operations below

    async def _store(self, user_id: str, record: CredentialRecord) -> None:
        ttl = self._ttl_for(record)
        await self._redis.set(token_key(user_id), self._seal(user_id, record, self._cipher), ex=ttl)
        logger.debug(f"Stored X tokens for user {user_id} (ttl={ttl}s)")

    async def _retrieve(self, user_id: str) -> Optional[CredentialRecord]:
        raw = await self._redis.get(token_key(user_id))
        if raw is None:
            return None
        record = self._open(raw, self._cipher)
        if record.is_expired():
            logger.info(f"X tokens for user {user_id} expired at {record.expires_at.isoformat()}, removing")
            await self._remove(user_id)
            return None
        return record

    async def _remove(self, user_id: str) -> None:
        await self._redis.delete(token_key(user_id))

    async def store(self, user_id: str, record: CredentialRecord) -> None:
        """Encrypt and persist a record, expiring with the token (or after the default TTL)"""
        async with self._lock:
            await self._store(user_id, record)

    async def retrieve(self, user_id: str) -> Optional[CredentialRecord]:
        """Load and decrypt a record; expired records are deleted and read as absent

        Raises:
            EncryptionError: If the stored envelope cannot be decrypted
        """
        async with self._lock:
            return await self._retrieve(user_id)

    async def remove(self, user_id: str) -> None:
        async with self._lock:
            await self._remove(user_id)

    async def update_expiry(self, user_id: str, expires_at: datetime) -> Optional[CredentialRecord]:
        """Re-store a record with a new expiry; returns None if no record exists"""
        async with self._lock:
            record = await self._retrieve(user_id)
            if record is None:
                return None
            updated = CredentialRecord.model_validate({**record.model_dump(), "expires_at": expires_at})
            await self._store(user_id, updated)
            return updated

    async def list_valid(self) -> List[CredentialRecord]:
        """Decrypt every stored record, skipping (and logging) unreadable or expired ones"""
        records = []
        now = datetime.now(timezone.utc)
        async with self._lock:
            for key in await scan_keys(self._redis, TOKENS_PREFIX):
                user_id = key.split(":", 1)[1]
                raw = await self._redis.get(key)
                if raw is None:
                    continue
                try:
                    record = self._open(raw, self._cipher)
                except EncryptionError as e:
                    logger.warning(f"Skipping unreadable X tokens for user {user_id}: {e}")
                    continue
                if record.is_expired(now):
                    logger.info(f"Skipping expired X tokens for user {user_id}")
                    await self._remove(user_id)
                    continue
                records.append(record)
        return records

    async def rotate_key(self, new_key: bytes) -> KeyRotationResult:
        """Re-encrypt every record under a new 32-byte key

        All records are decrypted first; if any fails, nothing is written.
        Re-encrypted records are then written in a single transaction and the
        new key becomes active only after it commits. Stores and reads wait
        for the rotation to finish, so no record is written under the old key
        after the scan and none is overwritten by a stale copy.

        Raises:
            InvalidKeyError: If new_key is not exactly 32 bytes (storage unchanged)
            KeyRotationError: If any record could not be migrated (old key kept)
        """
        if not isinstance(new_key, (bytes, bytearray)) or len(new_key) != KEY_SIZE:
            raise InvalidKeyError(f"New encryption key must be exactly {KEY_SIZE} bytes")
        new_cipher = EnvelopeCipher(bytes(new_key))

        async with self._lock:
            decrypted = {}
            failed = []
            for key in await scan_keys(self._redis, TOKENS_PREFIX):
                user_id = key.split(":", 1)[1]
                raw = await self._redis.get(key)
                if raw is None:
                    continue
                try:
                    decrypted[user_id] = self._open(raw, self._cipher)
                except EncryptionError as e:
                    security_logger.error(f"Key rotation cannot decrypt tokens for user {user_id}: {e}")
                    failed.append(user_id)

            if failed:
                raise KeyRotationError(
                    f"Key rotation aborted: {len(failed)} record(s) could not be decrypted",
                    migrated=[],
                    failed=sorted(failed),
                )

            try:
                async with self._redis.pipeline(transaction=True) as pipe:
                    for user_id, record in decrypted.items():
                        pipe.set(token_key(user_id), self._seal(user_id, record, new_cipher), keepttl=True)
                    await pipe.execute()
            except RedisError as e:
                security_logger.error(f"Key rotation transaction failed, keeping previous key: {e}")
                raise KeyRotationError(
                    f"Key rotation aborted: {e}",
                    migrated=[],
                    failed=sorted(decrypted),
                )

            self._cipher = new_cipher

        migrated = sorted(decrypted)
        security_logger.info(f"Rotated encryption key for {len(migrated)} stored token record(s)")
        return KeyRotationResult(migrated=migrated)
