"""
Encryption of backup containers with Fernet keys.

An encrypted container is a small text envelope::

    owuiarchive-fernet-v1
    <data key wrapped for recipient 1>
    <data key wrapped for recipient 2>
    <blank line>
    <container bytes encrypted with the data key>

Every line is a Fernet token. The container is encrypted once with a random
data key, and that key is wrapped with each recipient's key file, so any one
of the recipients can decrypt it.
"""

import logging
import os
from pathlib import Path
from typing import List, Sequence, Union

from cryptography.fernet import Fernet, InvalidToken

from owuiarchive.core.errors import EncryptionError

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]

MAGIC = b"owuiarchive-fernet-v1"
ENCRYPTED_SUFFIX = ".enc"


def _load_key(path: PathLike) -> Fernet:
    try:
        key = Path(path).read_bytes().strip()
        return Fernet(key)
    except OSError as e:
        raise EncryptionError(f"cannot read key file {path}: {e}") from e
    except ValueError as e:
        raise EncryptionError(f"invalid key file {path}: {e}") from e


class FernetEncryptionService:
    """Encrypts and decrypts container files for one or more key files."""

    def generate_key(self, path: PathLike) -> Path:
        """Write a new key file, readable only by its owner.

        Raises:
            EncryptionError: If the file already exists or cannot be written
        """
        path = Path(path)
        if path.exists():
            raise EncryptionError(f"key file already exists: {path}")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(Fernet.generate_key() + b"\n")
            os.chmod(path, 0o600)
        except OSError as e:
            raise EncryptionError(f"cannot write key file {path}: {e}") from e
        logger.info(f"Generated encryption key: {path}")
        return path

    def is_encrypted(self, path: PathLike) -> bool:
        try:
            with open(path, "rb") as f:
                return f.read(len(MAGIC)) == MAGIC
        except OSError:
            return False

    def encrypt(self, path: PathLike, recipients: Sequence[PathLike], remove_plain: bool = False) -> Path:
        """Encrypt a container for the given recipient key files.

        Args:
            path: Plain container
            recipients: Key files; at least one is required
            remove_plain: Delete the plain container afterwards

        Returns:
            Path of the encrypted file (the plain path plus ``.enc``)
        """
        if not recipients:
            raise EncryptionError("at least one recipient key is required")
        path = Path(path)
        keys = [_load_key(recipient) for recipient in recipients]

        data_key = Fernet.generate_key()
        try:
            body = Fernet(data_key).encrypt(path.read_bytes())
        except OSError as e:
            raise EncryptionError(f"cannot read {path}: {e}") from e

        lines: List[bytes] = [MAGIC]
        lines.extend(key.encrypt(data_key) for key in keys)
        lines.extend([b"", body])

        output = path.with_name(path.name + ENCRYPTED_SUFFIX)
        try:
            output.write_bytes(b"\n".join(lines))
            if remove_plain:
                path.unlink()
        except OSError as e:
            raise EncryptionError(f"cannot write {output}: {e}") from e
        logger.info(f"Encrypted {path.name} for {len(keys)} recipient(s): {output.name}")
        return output

    def decrypt(self, path: PathLike, identities: Sequence[PathLike], output: PathLike = None) -> Path:
        """Decrypt a container with the first identity that can open it.

        Args:
            path: Encrypted container
            identities: Key files to try, in order
            output: Destination; defaults to the path without ``.enc``

        Returns:
            Path of the decrypted container
        """
        if not identities:
            raise EncryptionError("at least one identity key is required")
        path = Path(path)
        try:
            header, _, body = path.read_bytes().partition(b"\n\n")
        except OSError as e:
            raise EncryptionError(f"cannot read {path}: {e}") from e

        lines = header.split(b"\n")
        if lines[0] != MAGIC or not body:
            raise EncryptionError(f"{path.name} is not an encrypted backup")

        data_key = None
        for identity in identities:
            key = _load_key(identity)
            for wrapped in lines[1:]:
                try:
                    data_key = key.decrypt(wrapped)
                    break
                except InvalidToken:
                    continue
            if data_key is not None:
                break
        if data_key is None:
            raise EncryptionError(f"none of the given keys can decrypt {path.name}")

        try:
            plain = Fernet(data_key).decrypt(body.strip())
        except InvalidToken as e:
            raise EncryptionError(f"{path.name} is corrupt") from e

        if output is None:
            name = path.name[: -len(ENCRYPTED_SUFFIX)] if path.name.endswith(ENCRYPTED_SUFFIX) else path.name + ".zip"
            output = path.with_name(name)
        output = Path(output)
        try:
            output.write_bytes(plain)
        except OSError as e:
            raise EncryptionError(f"cannot write {output}: {e}") from e
        logger.info(f"Decrypted {path.name} to {output.name}")
        return output
