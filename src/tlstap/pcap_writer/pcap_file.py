"""
PCAP file format writer (legacy .pcap, nanosecond resolution).

Reference: https://wiki.wireshark.org/Development/LibpcapFileFormat

File structure:
- 24-byte global header (written once, lazily, before the first record)
- Repeated packet records:
  - 16-byte record header (ts_sec, ts_nsec, caplen, wirelen)
  - Packet data (caplen bytes, no padding)
"""

import logging
import os
import struct
from typing import BinaryIO, Optional

from ..utils.retry import retry_io

logger = logging.getLogger(__name__)


class PcapFileWriter:
    """
    Appends packet records to a classic pcap container.

    The writer is not thread safe; the owning sink serializes access.
    """

    # Nanosecond-resolution magic, little-endian
    MAGIC_NUMBER_NANO = 0xA1B23C4D

    VERSION_MAJOR = 2
    VERSION_MINOR = 4

    # Link type constants (from pcap/bpf.h)
    DLT_EN10MB = 1        # Ethernet

    DEFAULT_SNAPLEN = 262144

    GLOBAL_HEADER = struct.Struct('<IHHiIII')
    RECORD_HEADER = struct.Struct('<IIII')

    def __init__(self, filepath: str,
                 link_type: int = DLT_EN10MB,
                 snaplen: int = DEFAULT_SNAPLEN,
                 io_retries: int = 3,
                 io_retry_delay: float = 0.05):
        """
        Args:
            filepath: Path of the .pcap file to create (truncated on first write)
            link_type: DLT_* value for every record in the file
            snaplen: Advertised maximum record length
            io_retries: Retries for transient write failures
            io_retry_delay: Initial delay between retries (seconds)
        """
        self.filepath = filepath
        self.link_type = link_type
        self.snaplen = snaplen
        self.io_retries = io_retries
        self.io_retry_delay = io_retry_delay
        self.file_handle: Optional[BinaryIO] = None
        self._header_written = False
        self._closed = False
        self.records_written = 0
        self.bytes_written = 0

    def _open(self) -> None:
        parent = os.path.dirname(os.path.abspath(self.filepath))
        os.makedirs(parent, exist_ok=True)
        self.file_handle = open(self.filepath, 'wb')

    def _write(self, data: bytes, description: str) -> None:
        def _do():
            self.file_handle.write(data)
        retry_io(_do, description, retries=self.io_retries, delay=self.io_retry_delay)
        self.bytes_written += len(data)

    def write_header(self) -> None:
        """
        Write the 24-byte global header. Called automatically before the
        first record; a no-op afterwards.
        """
        if self._header_written:
            return
        if self._closed:
            raise ValueError(f"PCAP writer for {self.filepath} is closed")
        if self.file_handle is None:
            self._open()
        # Fields: magic, version_major, version_minor, thiszone,
        # sigfigs, snaplen, link_type
        header = self.GLOBAL_HEADER.pack(
            self.MAGIC_NUMBER_NANO,
            self.VERSION_MAJOR,
            self.VERSION_MINOR,
            0,
            0,
            self.snaplen,
            self.link_type,
        )
        self._write(header, f"pcap header {self.filepath}")
        self._header_written = True
        logger.debug("Wrote pcap global header to %s (link_type=%d)",
                     self.filepath, self.link_type)

    def write_record(self, timestamp_ns: int, frame: bytes) -> None:
        """
        Append one packet record.

        Args:
            timestamp_ns: Capture time in nanoseconds since the Unix epoch
            frame: Full frame bytes for the file's link type
        """
        self.write_header()
        if timestamp_ns < 0:
            timestamp_ns = 0
        ts_sec, ts_nsec = divmod(timestamp_ns, 1_000_000_000)
        caplen = min(len(frame), self.snaplen)
        record = self.RECORD_HEADER.pack(ts_sec & 0xFFFFFFFF, ts_nsec, caplen, len(frame))
        # header and data go out in one write so a retry never splits a record
        self._write(record + frame[:caplen], f"pcap record {self.records_written + 1}")
        self.records_written += 1

    def flush(self) -> None:
        if self.file_handle is not None:
            retry_io(self.file_handle.flush, f"flush {self.filepath}",
                     retries=self.io_retries, delay=self.io_retry_delay)

    def close(self) -> None:
        """
        Flush and close the file. Writes the global header first if no record
        was ever written, so the result is always a valid (possibly empty)
        capture. Safe to call multiple times.
        """
        if self._closed:
            return
        try:
            if not self._header_written:
                self.write_header()
            self.flush()
        finally:
            self._closed = True
            if self.file_handle is not None:
                handle, self.file_handle = self.file_handle, None
                handle.close()
