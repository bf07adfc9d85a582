"""
Minimal MP4 packaging.

Output is an ISO-BMFF `ftyp` box followed by the frame payloads. When no
payload is usable the result is the header plus an empty `mdat` box, which
players accept as a zero-length video.
"""
from app.domain.errors import PackagingError

# size=32, 'ftyp', major 'isom', minor 0, compatible isom iso2 avc1 mp42
MP4_HEADER = bytes([
    0x00, 0x00, 0x00, 0x20, 0x66, 0x74, 0x79, 0x70,
    0x69, 0x73, 0x6F, 0x6D, 0x00, 0x00, 0x00, 0x00,
    0x69, 0x73, 0x6F, 0x6D, 0x69, 0x73, 0x6F, 0x32,
    0x61, 0x76, 0x63, 0x31, 0x6D, 0x70, 0x34, 0x32,
])

EMPTY_MDAT = bytes([0x00, 0x00, 0x00, 0x08, 0x6D, 0x64, 0x61, 0x74])

MINIMAL_CONTAINER = MP4_HEADER + EMPTY_MDAT


def assemble(frame_payloads: list[bytes]) -> bytes:
    """Raises PackagingError when there is nothing to package."""
    body = b"".join(p for p in frame_payloads if p)
    if not body:
        raise PackagingError("no frame data to package")
    return MP4_HEADER + body
