#!/usr/bin/env python3
"""
Upload Manager for Data Transmit
Sends spooled files to the collector with HTTP PUT

Each call is a single transfer attempt. Retrying is the sweeper's job and
deleting the uploaded file is the caller's job; this module does neither.
"""

import logging
import os
from pathlib import Path
from typing import Tuple, Union
from urllib.parse import quote

import requests

from data_transmit.utils import format_bytes

logger = logging.getLogger(__name__)

USER_AGENT = "data-transmit/1.0"


class TransferError(Exception):
    """
    Raised when a transfer attempt fails.

    Covers every failure the same way: file cannot be opened, a metadata
    value cannot be escaped, transport error, or a non-2xx response. The
    file stays in its spool directory and is retried by a later sweep.
    """
    pass


class UploadManager:
    """
    Uploads files to the collector over a single reused HTTP session.

    The collector receives the file body in a PUT request whose query string
    identifies it: ``filename``, ``node_id``, ``build_id`` and ``directory``.

    Not safe for concurrent use; callers serialize transfers through the
    system's transfer lock.

    Example:
        >>> uploader = UploadManager(
        ...     collector_url='https://collector.example.com/upload/',
        ...     node_id=b'OW0123456789AB',
        ...     build_id='git'
        ... )
        >>> uploader.upload_file('/var/spool/data-transmit/http/1.gz', 'http')

    Attributes:
        collector_url (str): Collector endpoint
        node_id (bytes): Raw node identity sent with every upload
        build_id (str): Build/version identifier sent with every upload
        timeout (Tuple[float, float]): (connect, read) transport timeouts
        session (requests.Session): Transfer handle reused across attempts
    """

    def __init__(self, collector_url: str, node_id: Union[bytes, str], build_id: str,
                 verify_ssl: bool = True,
                 connect_timeout: float = 30,
                 read_timeout: float = 300):
        """
        Initialize upload manager.

        Args:
            collector_url: Collector endpoint URL
            node_id: Raw node identity bytes (str is encoded as UTF-8)
            build_id: Build/version identifier
            verify_ssl: Verify the collector's TLS certificate
            connect_timeout: Seconds to wait for the connection
            read_timeout: Seconds to wait between bytes of the response
        """
        self.collector_url = collector_url
        self.node_id = node_id
        self.build_id = build_id
        self.timeout: Tuple[float, float] = (connect_timeout, read_timeout)

        self.session = requests.Session()
        self.session.verify = verify_ssl
        self.session.headers.update({"User-Agent": USER_AGENT})

        logger.info(f"Initialized for collector: {collector_url}")
        logger.info(f"Build ID: {build_id}")
        if not verify_ssl:
            logger.warning("TLS certificate verification is DISABLED")

    def build_url(self, local_path: str, directory_name: str) -> str:
        """
        Build the upload URL with escaped metadata.

        Paths and directory names are escaped from their filesystem bytes,
        so names that are not valid UTF-8 are sent exactly as stored.

        Raises:
            TransferError: If any value cannot be escaped
        """
        try:
            filename = quote(os.fsencode(local_path), safe="")
            node_id = quote(self.node_id, safe="")
            build_id = quote(self.build_id, safe="")
            directory = quote(os.fsencode(directory_name), safe="")
        except (TypeError, UnicodeError) as e:
            raise TransferError(f"Failed to encode URL for {local_path}: {e}") from e

        return (
            f"{self.collector_url}?filename={filename}&node_id={node_id}"
            f"&build_id={build_id}&directory={directory}"
        )

    def upload_file(self, local_path: str, directory_name: str) -> None:
        """
        Make one attempt to upload a file.

        Args:
            local_path: Absolute path of the spooled file
            directory_name: Name of the spool directory holding it

        Raises:
            TransferError: If the attempt failed for any reason
        """
        file_path = Path(local_path)
        url = self.build_url(str(file_path), directory_name)

        try:
            with open(file_path, "rb") as f:
                file_size = os.fstat(f.fileno()).st_size
                # requests switches to chunked encoding for a zero-length file object
                body = f if file_size else b""
                response = self.session.put(
                    url,
                    data=body,
                    headers={"Content-Length": str(file_size)},
                    timeout=self.timeout,
                )
        # RequestException derives from OSError, so it must be caught first
        except requests.RequestException as e:
            raise TransferError(f"Failed to upload {file_path.name}: {e}") from e
        except OSError as e:
            raise TransferError(f"Cannot open {file_path}: {e}") from e

        status = response.status_code
        response.close()

        if not 200 <= status < 300:
            raise TransferError(f"Collector rejected {file_path.name}: HTTP {status}")

        logger.info(f"SUCCESS: {file_path.name} [{directory_name}] ({format_bytes(file_size)})")

    def close(self) -> None:
        """Release the HTTP session."""
        self.session.close()
