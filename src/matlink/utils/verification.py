"""Integrity checks for downloaded firmware images."""

import hashlib
import logging
from pathlib import Path
from typing import Optional


def compute_md5(file_path: Path, chunk_size: int = 8192) -> str:
    """Compute MD5 hash of a file.

    Args:
        file_path: Path to file to hash
        chunk_size: Read buffer size

    Returns:
        32-character hex MD5 hash string

    Raises:
        FileNotFoundError: If file doesn't exist
        IOError: If file read fails
    """
    logger = logging.getLogger("matlink.verification")
    md5_hash = hashlib.md5()

    with open(file_path, "rb") as f:
        while chunk := f.read(chunk_size):
            md5_hash.update(chunk)

    result = md5_hash.hexdigest()
    logger.debug(f"Computed MD5 for {file_path.name}: {result}")
    return result


def verify_firmware_or_raise(
    file_path: Path, expected_size: int, expected_md5: Optional[str] = None
) -> None:
    """Check a downloaded image against the release metadata.

    The size is always checked; the MD5 only when the release carries one.

    Raises:
        ValueError: On size or MD5 mismatch
        FileNotFoundError: If file doesn't exist
    """
    logger = logging.getLogger("matlink.verification")

    actual_size = file_path.stat().st_size
    if actual_size != expected_size:
        logger.error(
            f"Size mismatch for {file_path.name}: "
            f"expected {expected_size}, got {actual_size}"
        )
        raise ValueError(f"SIZE_MISMATCH: expected {expected_size}, got {actual_size}")

    if expected_md5 is None:
        logger.info(f"Size verification passed for {file_path.name}")
        return

    actual_md5 = compute_md5(file_path)
    if actual_md5 != expected_md5.lower():
        logger.error(
            f"MD5 mismatch for {file_path.name}: "
            f"expected {expected_md5}, got {actual_md5}"
        )
        raise ValueError(f"MD5_MISMATCH: expected {expected_md5}, got {actual_md5}")

    logger.info(f"MD5 verification passed for {file_path.name}")
