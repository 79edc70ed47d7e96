from __future__ import annotations

"""
Minimal TLV encoder/decoder for the archive index.

Encoding
- TLV: varint(tag) || varint(length) || payload
- Integers: unsigned LEB128 varint
- Bytes: raw payload (length provided by TLV len)
- Strings: UTF-8 bytes (length provided by TLV len)

Top-level Index tags
- 1: version (payload: varint major || varint minor)
- 2: archive_uuid (bytes[16])
- 3: writer_info (utf8)
- 4: block_size (varint)
- 5: default_codec (varint)
- 6: samples (container; contains sample TLVs, tag=1 per sample)

Sample (within samples container; tag=1)
- 1: name (utf8)
- 2: contigs (container; contains contig TLVs, tag=1 per contig)

Contig (within contigs container; tag=1)
- 1: name (utf8)
- 2: length (varint, residues)
- 3: blocks (container; contains block TLVs, tag=1 per block)

Block (within blocks container; tag=1)
- 1: offset (varint, record offset)
- 2: payload_len (varint, stored bytes)
- 3: residues (varint)
- 4: blake2s_16 (bytes[16])

Unknown tags are skipped so newer minor versions stay readable.
"""

from typing import Dict, List, Optional, Tuple


def _varint_encode(n: int) -> bytes:
    if n < 0:
        raise ValueError("varint: negative not supported")
    out = bytearray()
    while True:
        b = n & 0x7F
        n >>= 7
        if n:
            out.append(b | 0x80)
        else:
            out.append(b)
            break
    return bytes(out)


def _varint_decode(data: bytes, pos: int) -> Tuple[int, int]:
    shift = 0
    result = 0
    while True:
        if pos >= len(data):
            raise ValueError("varint: truncated")
        b = data[pos]
        pos += 1
        result |= (b & 0x7F) << shift
        if not (b & 0x80):
            return result, pos
        shift += 7
        if shift > 63:
            raise ValueError("varint: too large")


def _varint_value(payload: bytes) -> int:
    v, pos = _varint_decode(payload, 0)
    if pos != len(payload):
        raise ValueError("varint: trailing bytes")
    return v


def _tlv(tag: int, payload: bytes) -> bytes:
    return _varint_encode(tag) + _varint_encode(len(payload)) + payload


def _iter_tlvs(data: bytes) -> List[Tuple[int, bytes]]:
    items: List[Tuple[int, bytes]] = []
    pos = 0
    n = len(data)
    while pos < n:
        tag, pos = _varint_decode(data, pos)
        ln, pos = _varint_decode(data, pos)
        if pos + ln > n:
            raise ValueError("TLV length out of range")
        items.append((tag, data[pos : pos + ln]))
        pos += ln
    return items


def _dumps_block(block: Dict) -> bytes:
    out = bytearray()
    out += _tlv(1, _varint_encode(int(block["offset"])))
    out += _tlv(2, _varint_encode(int(block["payload_len"])))
    out += _tlv(3, _varint_encode(int(block["residues"])))
    tag16 = block["blake2s_16"]
    if len(tag16) != 16:
        raise ValueError("block tag must be 16 bytes")
    out += _tlv(4, tag16)
    return bytes(out)


def _dumps_contig(contig: Dict) -> bytes:
    out = bytearray()
    out += _tlv(1, contig["name"].encode("utf-8"))
    out += _tlv(2, _varint_encode(int(contig["length"])))
    blocks = b"".join(_tlv(1, _dumps_block(b)) for b in contig.get("blocks", []))
    out += _tlv(3, blocks)
    return bytes(out)


def _dumps_sample(sample: Dict) -> bytes:
    out = bytearray()
    out += _tlv(1, sample["name"].encode("utf-8"))
    contigs = b"".join(_tlv(1, _dumps_contig(c)) for c in sample.get("contigs", []))
    out += _tlv(2, contigs)
    return bytes(out)


def dumps_index(idx: Dict) -> bytes:
    out = bytearray()
    ver = idx.get("version", {})
    out += _tlv(1, _varint_encode(int(ver.get("major", 0))) + _varint_encode(int(ver.get("minor", 0))))
    if "archive_uuid" in idx:
        out += _tlv(2, idx["archive_uuid"])
    if "writer_info" in idx:
        out += _tlv(3, idx["writer_info"].encode("utf-8"))
    out += _tlv(4, _varint_encode(int(idx.get("block_size", 0))))
    out += _tlv(5, _varint_encode(int(idx.get("default_codec", 0))))
    samples = b"".join(_tlv(1, _dumps_sample(s)) for s in idx.get("samples", []))
    out += _tlv(6, samples)
    return bytes(out)


class _Budget:
    def __init__(self, limits: Dict[str, int]):
        self.samples = int(limits.get("max_samples", 1_000_000))
        self.contigs = int(limits.get("max_contigs", 10_000_000))
        self.blocks = int(limits.get("max_total_blocks", 50_000_000))

    def take(self, kind: str) -> None:
        left = getattr(self, kind) - 1
        if left < 0:
            raise ValueError(f"index exceeds limit on {kind}")
        setattr(self, kind, left)


def _loads_block(data: bytes) -> Dict:
    block: Dict = {}
    for tag, payload in _iter_tlvs(data):
        if tag == 1:
            block["offset"] = _varint_value(payload)
        elif tag == 2:
            block["payload_len"] = _varint_value(payload)
        elif tag == 3:
            block["residues"] = _varint_value(payload)
        elif tag == 4:
            if len(payload) != 16:
                raise ValueError("block tag must be 16 bytes")
            block["blake2s_16"] = payload
    for key in ("offset", "payload_len", "residues", "blake2s_16"):
        if key not in block:
            raise ValueError(f"block missing {key}")
    return block


def _loads_contig(data: bytes, budget: _Budget) -> Dict:
    contig: Dict = {"blocks": []}
    for tag, payload in _iter_tlvs(data):
        if tag == 1:
            contig["name"] = payload.decode("utf-8")
        elif tag == 2:
            contig["length"] = _varint_value(payload)
        elif tag == 3:
            for btag, bpayload in _iter_tlvs(payload):
                if btag != 1:
                    continue
                budget.take("blocks")
                contig["blocks"].append(_loads_block(bpayload))
    if "name" not in contig or "length" not in contig:
        raise ValueError("contig missing name or length")
    return contig


def _loads_sample(data: bytes, budget: _Budget) -> Dict:
    sample: Dict = {"contigs": []}
    for tag, payload in _iter_tlvs(data):
        if tag == 1:
            sample["name"] = payload.decode("utf-8")
        elif tag == 2:
            for ctag, cpayload in _iter_tlvs(payload):
                if ctag != 1:
                    continue
                budget.take("contigs")
                sample["contigs"].append(_loads_contig(cpayload, budget))
    if "name" not in sample:
        raise ValueError("sample missing name")
    return sample


def loads_index(data: bytes, *, limits: Optional[Dict[str, int]] = None) -> Dict:
    """Parse index TLV with optional safety limits.

    limits keys (optional):
      - max_samples
      - max_contigs
      - max_total_blocks
    """
    budget = _Budget(limits or {})
    idx: Dict = {"samples": []}
    for tag, payload in _iter_tlvs(data):
        if tag == 1:  # version
            major, pos = _varint_decode(payload, 0)
            minor, _ = _varint_decode(payload, pos)
            idx["version"] = {"major": major, "minor": minor}
        elif tag == 2:
            idx["archive_uuid"] = payload
        elif tag == 3:
            idx["writer_info"] = payload.decode("utf-8")
        elif tag == 4:
            idx["block_size"] = _varint_value(payload)
        elif tag == 5:
            idx["default_codec"] = _varint_value(payload)
        elif tag == 6:
            for stag, spayload in _iter_tlvs(payload):
                if stag != 1:
                    continue
                budget.take("samples")
                idx["samples"].append(_loads_sample(spayload, budget))
    return idx
