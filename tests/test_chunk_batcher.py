import pytest

from tarjuman.streaming.chunk_batcher import ChunkBatcher


def test_batch_released_exactly_at_threshold():
    b = ChunkBatcher(threshold=2)
    assert b.on_fragment(b"aa") is None
    assert b.pending_count == 1

    batch = b.on_fragment(b"bb")
    assert batch is not None
    assert batch.fragments == (b"aa", b"bb")
    assert batch.content == b"aabb"
    assert batch.fragment_count == 2
    assert b.pending_count == 0


def test_batches_are_sequenced_and_never_share_fragments():
    b = ChunkBatcher(threshold=2)
    out = [b.on_fragment(bytes([i])) for i in range(6)]
    batches = [x for x in out if x is not None]
    assert [x.seq for x in batches] == [1, 2, 3]
    assert [x.content for x in batches] == [b"\x00\x01", b"\x02\x03", b"\x04\x05"]


def test_stop_discards_partial_batch():
    b = ChunkBatcher(threshold=2)
    b.on_fragment(b"only-one")
    assert b.on_session_stop() == 1
    assert b.pending_count == 0
    assert b.on_fragment(b"next") is None


def test_start_clears_pending_and_bumps_generation():
    b = ChunkBatcher()
    b.on_fragment(b"stale")
    assert b.on_session_start() == 1
    batch = None
    for frag in (b"x", b"y"):
        batch = b.on_fragment(frag)
    assert batch is not None
    assert batch.generation == 1
    assert batch.content == b"xy"


def test_empty_fragments_count_toward_threshold():
    b = ChunkBatcher(threshold=2)
    assert b.on_fragment(b"") is None
    batch = b.on_fragment(b"")
    assert batch is not None
    assert batch.content == b""
    assert batch.is_empty is True


def test_rejects_non_bytes_fragment():
    b = ChunkBatcher()
    with pytest.raises(ValueError, match="bytes"):
        b.on_fragment("text")
