"""Generate-or-load lifecycle for the server signing keypair.

The keypair lives as two raw binary files in a key directory. Presence of
both files means "load"; absence of either means "generate both and persist
both". Generation and loading happen under an exclusive ``portalocker`` lock
so workers booting in parallel agree on a single keypair, and every write is
atomic (temp file, fsync, ``os.replace``).

After startup the keypair is held in an immutable :class:`SigningContext`
that signing and verification code receives explicitly.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Iterator

import portalocker

from .errors import SigningInitializationError, SigningNotInitializedError
from .primitives import KeyPair, SignatureProvider, get_provider
from .settings import OrderIntegritySettings, get_settings

LOGGER = logging.getLogger(__name__)

LOCK_FILE_NAME = ".keys.lock"
_SELF_TEST_MESSAGE = hashlib.sha256(b"order-integrity keypair self-test").digest()


@dataclass(frozen=True, slots=True)
class SigningContext:
    """Read-only handle on the active keypair and its provider."""

    provider: SignatureProvider
    public_key: bytes
    secret_key: bytes = field(repr=False)

    @property
    def algorithm(self) -> str:
        return self.provider.algorithm

    def get_public_key(self) -> bytes:
        return self.public_key

    def get_algorithm(self) -> str:
        return self.provider.algorithm

    def fingerprint(self) -> str:
        """Short SHA-256 fingerprint of the public key, safe to log."""

        return hashlib.sha256(self.public_key).hexdigest()[:16]


@contextmanager
def _exclusive_lock(lock_path: Path) -> Iterator[IO[bytes]]:
    with lock_path.open("a+b") as lock_fp:
        portalocker.lock(lock_fp, portalocker.LOCK_EX)
        try:
            yield lock_fp
        finally:
            portalocker.unlock(lock_fp)


def _fsync_directory(path: Path) -> None:
    if os.name == "nt":  # pragma: no cover - Windows does not need dir fsync
        return
    flags = getattr(os, "O_DIRECTORY", None)
    if flags is None:  # pragma: no cover - platform without O_DIRECTORY
        return
    fd = os.open(str(path), flags)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def _write_atomic(path: Path, data: bytes, mode: int) -> None:
    """Replace ``path`` with ``data`` without exposing a partial file."""

    temp_path: Path | None = None
    try:
        with tempfile.NamedTemporaryFile(
            "wb", dir=str(path.parent), delete=False
        ) as tmp:
            temp_path = Path(tmp.name)
            tmp.write(data)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.chmod(temp_path, mode)
        os.replace(temp_path, path)
    except Exception:
        if temp_path is not None:
            temp_path.unlink(missing_ok=True)
        raise


class KeyLifecycleManager:
    """Own the single long-lived signing keypair of a server process.

    Args:
        key_dir: Directory holding the key files; created when missing.
        provider: Signature primitive used to generate and check keys.
        public_key_file: Public key file name inside ``key_dir``.
        secret_key_file: Secret key file name inside ``key_dir``.
    """

    def __init__(
        self,
        key_dir: str | Path,
        provider: SignatureProvider,
        *,
        public_key_file: str = "signing_public.key",
        secret_key_file: str = "signing_secret.key",
    ) -> None:
        self._key_dir = Path(key_dir)
        self._provider = provider
        self._public_key_path = self._key_dir / public_key_file
        self._secret_key_path = self._key_dir / secret_key_file
        self._context: SigningContext | None = None

    @classmethod
    def from_settings(
        cls,
        settings: OrderIntegritySettings | None = None,
        *,
        provider: SignatureProvider | None = None,
    ) -> KeyLifecycleManager:
        """Build a manager from settings, resolving the configured algorithm."""

        settings = settings or get_settings()
        return cls(
            settings.key_dir,
            provider or get_provider(settings.algorithm),
            public_key_file=settings.public_key_file,
            secret_key_file=settings.secret_key_file,
        )

    @property
    def public_key_path(self) -> Path:
        return self._public_key_path

    @property
    def secret_key_path(self) -> Path:
        return self._secret_key_path

    @property
    def initialized(self) -> bool:
        return self._context is not None

    @property
    def context(self) -> SigningContext:
        """Return the signing context.

        Raises:
            SigningNotInitializedError: If :meth:`initialize` has not completed.
        """

        if self._context is None:
            raise SigningNotInitializedError(
                "Signing keys are not initialized; call initialize() at startup"
            )
        return self._context

    def get_public_key(self) -> bytes:
        return self.context.public_key

    def get_algorithm(self) -> str:
        return self.context.algorithm

    def initialize(self) -> SigningContext:
        """Load or generate the keypair and return the signing context.

        Repeated calls return the context created by the first call. Must run
        to completion before the process serves order-affecting requests.

        Raises:
            SigningInitializationError: On any failure to read, generate,
                validate or persist the keys. Callers should terminate.
        """

        if self._context is not None:
            return self._context

        try:
            self._key_dir.mkdir(parents=True, exist_ok=True)
            with _exclusive_lock(self._key_dir / LOCK_FILE_NAME):
                pair = self._load_or_generate()
            self._check_lengths(pair)
            context = SigningContext(
                provider=self._provider,
                public_key=pair.public_key,
                secret_key=pair.secret_key,
            )
            self._self_test(context)
        except SigningInitializationError:
            raise
        except Exception as exc:
            LOGGER.critical(
                "Signing key initialization failed",
                extra={
                    "algorithm": self._provider.algorithm,
                    "key_dir": str(self._key_dir),
                    "error_type": type(exc).__name__,
                },
            )
            raise SigningInitializationError(
                f"Unable to initialize {self._provider.algorithm} signing keys "
                f"in {self._key_dir}: {exc}"
            ) from exc

        self._context = context
        LOGGER.info(
            "Order signing initialized",
            extra={
                **self._provider.describe(),
                "public_key_fingerprint": context.fingerprint(),
            },
        )
        return context

    def _load_or_generate(self) -> KeyPair:
        public_exists = self._public_key_path.exists()
        secret_exists = self._secret_key_path.exists()
        if public_exists and secret_exists:
            LOGGER.info(
                "Loading existing signing keypair",
                extra={"key_dir": str(self._key_dir)},
            )
            return KeyPair(
                public_key=self._public_key_path.read_bytes(),
                secret_key=self._secret_key_path.read_bytes(),
            )

        if public_exists or secret_exists:
            LOGGER.warning(
                "Found half of a signing keypair; regenerating both halves",
                extra={
                    "public_key_present": public_exists,
                    "secret_key_present": secret_exists,
                },
            )
        LOGGER.info(
            "Generating signing keypair",
            extra={
                "algorithm": self._provider.algorithm,
                "key_dir": str(self._key_dir),
            },
        )
        pair = self._provider.generate_keypair()
        self._check_lengths(pair)
        _write_atomic(self._secret_key_path, pair.secret_key, 0o600)
        _write_atomic(self._public_key_path, pair.public_key, 0o644)
        _fsync_directory(self._key_dir)
        return pair

    def _check_lengths(self, pair: KeyPair) -> None:
        provider = self._provider
        for label, blob, expected in (
            ("public key", pair.public_key, provider.public_key_length),
            ("secret key", pair.secret_key, provider.secret_key_length),
        ):
            if len(blob) != expected:
                raise SigningInitializationError(
                    f"Stored {label} is {len(blob)} bytes but {provider.algorithm} "
                    f"requires {expected}; was the key directory created for a "
                    "different algorithm?"
                )

    def _self_test(self, context: SigningContext) -> None:
        provider = context.provider
        signature = provider.sign(_SELF_TEST_MESSAGE, context.secret_key)
        if len(signature) != provider.signature_length or not provider.verify(
            _SELF_TEST_MESSAGE, signature, context.public_key
        ):
            raise SigningInitializationError(
                "Signing keypair failed its self-test; the public and secret "
                "key files do not belong together"
            )


def initialize_signing(
    settings: OrderIntegritySettings | None = None,
    *,
    provider: SignatureProvider | None = None,
) -> SigningContext:
    """Initialize signing from settings; call once and await before serving."""

    return KeyLifecycleManager.from_settings(settings, provider=provider).initialize()
