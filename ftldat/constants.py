"""
ftldat: Archive format constants and limits.

Offsets are byte offsets from the start of the archive file.
Packed (PKG) archives are big-endian, classic .dat archives little-endian.
"""

import struct

# =============================================================================
# PACKED FORMAT (FTL 1.6+ / Into the Breach ftl.dat, "PKG\n")
# =============================================================================

PKG_SIGNATURE = b'PKG\n'

PKG_HEADER = struct.Struct('>4sHHII')   # signature, header size, entry size, count, path region size
PKG_ENTRY = struct.Struct('>IIIII')     # path hash, path offset|flags, data offset, stored size, unpacked size

PKG_HEADER_SIZE = PKG_HEADER.size       # 16
PKG_ENTRY_SIZE = PKG_ENTRY.size         # 20

PATH_OFFSET_MASK = 0x00FFFFFF           # low 24 bits of the path offset/flags word
FLAG_SHIFT = 24                         # flags live in the high byte
PATH_REGION_ALIGN = 4

# =============================================================================
# ENTRY ENCODING FLAGS
# =============================================================================

FLAG_VERBATIM = 0x00
FLAG_DEFLATED = 0x01

KNOWN_FLAGS = {
    FLAG_VERBATIM: 'verbatim',
    FLAG_DEFLATED: 'deflated',
}

DEFAULT_DEFLATE_LEVEL = 9

# =============================================================================
# CLASSIC FORMAT (FTL / Into the Breach resource.dat before 1.6)
# =============================================================================

DAT_U32 = struct.Struct('<I')
DAT_ENTRY_HEADER = struct.Struct('<II')  # data size, path length

# =============================================================================
# LIMITS
# =============================================================================

MAX_U32 = 0xFFFFFFFF
MAX_PATH_REGION = PATH_OFFSET_MASK       # a path offset must fit in 24 bits
READ_CHUNK_SIZE = 65536

# =============================================================================
# SANDBOX
# =============================================================================

# A directory is accepted as the save data location when it holds this file;
# the game writes it on first launch.
SAVE_DATA_MARKER = 'io_test.txt'

# Relative to the user's documents directory (Windows).
SAVE_DATA_DOCUMENTS_SUBDIR = 'My Games/Into The Breach'

# Relative to the game directory: Linux via Steam's Proton wrapper, then the
# installation directory fallback.
SAVE_DATA_RELATIVE_CANDIDATES = (
    '../../steamapps/compatdata/590380/pfx/',
    './user',
)
