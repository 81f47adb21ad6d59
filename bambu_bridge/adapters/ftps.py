"""Implicit FTPS upload to the printer's SD card."""

from __future__ import annotations

import asyncio
import ftplib
import io
import logging
import socket
import ssl
from typing import Any

LOGGER = logging.getLogger(__name__)


class UploadError(RuntimeError):
    """Raised when a file cannot be transferred to the printer."""


class ImplicitFTPTLS(ftplib.FTP_TLS):
    """FTP_TLS variant that wraps the control socket in TLS on connect.

    Data connections reuse the control channel's TLS session; the printers
    reject data channels that do not.
    """

    def connect(
        self,
        host: str = "",
        port: int = 0,
        timeout: float = -999,
        source_address: Any = None,
    ) -> str:
        if host:
            self.host = host
        if port:
            self.port = port
        if timeout != -999:
            self.timeout = timeout
        if source_address is not None:
            self.source_address = source_address

        sock = socket.create_connection(
            (self.host, self.port), self.timeout, source_address=self.source_address
        )
        self.af = sock.family
        self.sock = self.context.wrap_socket(sock, server_hostname=self.host)
        self.file = self.sock.makefile("r", encoding=self.encoding)
        self.welcome = self.getresp()
        return self.welcome

    def ntransfercmd(self, cmd: str, rest: Any = None) -> Any:
        conn, size = ftplib.FTP.ntransfercmd(self, cmd, rest)
        if self._prot_p:  # type: ignore[attr-defined]
            conn = self.context.wrap_socket(
                conn,
                server_hostname=self.host,
                session=self.sock.session,  # type: ignore[union-attr]
            )
        return conn, size


class FTPSUploader:
    """Uploads files to one printer over implicit FTPS."""

    def __init__(
        self,
        host: str,
        *,
        port: int,
        username: str,
        password: str,
        timeout: float = 1800.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.timeout = timeout
        self._password = password

    async def upload(self, name: str, data: bytes) -> None:
        """Store ``data`` as ``name`` in the printer's root directory.

        Raises:
            UploadError: On any connection, authentication or transfer failure.
        """

        LOGGER.info("Uploading %s (%d bytes) to %s", name, len(data), self.host)
        try:
            await asyncio.to_thread(self._upload_blocking, name, data)
        except UploadError:
            raise
        except (OSError, ftplib.Error, EOFError) as exc:
            raise UploadError(f"Upload of {name} to {self.host} failed: {exc}") from exc
        LOGGER.info("Uploaded %s to %s", name, self.host)

    def _connect(self) -> ImplicitFTPTLS:
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

        ftp = ImplicitFTPTLS(context=context)
        ftp.connect(self.host, self.port, timeout=self.timeout)
        try:
            ftp.login(self.username, self._password)
            ftp.prot_p()
        except Exception:
            ftp.close()
            raise
        return ftp

    def _upload_blocking(self, name: str, data: bytes) -> None:
        ftp = self._connect()
        try:
            ftp.storbinary(f"STOR {name}", io.BytesIO(data))
        finally:
            try:
                ftp.quit()
            except (OSError, ftplib.Error, EOFError):
                ftp.close()
