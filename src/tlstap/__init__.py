"""
tlstap: rebuild per-connection plaintext streams from captured SSL/TLS
read/write events and write them as transcripts or synthetic pcap files.
"""

__version__ = "0.1.0"
