"""Building blocks for an in-memory object cache: buffers, pools, a growing hash table, CRC-32C and a page store on files."""

__version__ = "0.1.0"