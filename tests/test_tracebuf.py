import pytest

from rsprof import tracebuf
from rsprof.tracebuf import (
    EVENT_SIZE,
    HEADER_SIZE,
    MAGIC,
    MAX_STACK_DEPTH,
    EventRecord,
    EventType,
    RingBufferWriter,
    RingHeader,
    buffer_size,
    find_code_segment,
    walk_frame_pointers,
)


def _slot(buffer, index):
    offset = HEADER_SIZE + index * EVENT_SIZE
    return EventRecord.unpack(bytes(buffer[offset : offset + EVENT_SIZE]))


@pytest.mark.parametrize(
    "event_type, byte",
    [(EventType.ALLOC, 1), (EventType.DEALLOC, 2), (EventType.CPU_SAMPLE, 3)],
)
def test_event_type_byte_on_the_wire(event_type, byte):
    data = EventRecord(event_type, stack=(1,)).pack()
    assert data[0] == byte
    assert EventRecord.unpack(data).event_type == event_type


def test_layout_sizes():
    assert HEADER_SIZE == 32
    assert EVENT_SIZE == 552
    assert buffer_size(4) == HEADER_SIZE + 4 * EVENT_SIZE


def test_header_round_trip_and_magic_bytes():
    header = RingHeader(capacity=8, write_index=5, pid=4242)
    data = header.pack()
    assert len(data) == HEADER_SIZE
    assert data[:8] == MAGIC.to_bytes(8, "little")
    assert RingHeader.unpack(data) == header


def test_header_unpack_too_short():
    with pytest.raises(ValueError):
        RingHeader.unpack(b"\x00" * 10)


def test_event_round_trip():
    event = EventRecord(EventType.ALLOC, ptr=0xABC0, size=64, timestamp=99, stack=(1, 2, 3))
    data = event.pack()
    assert len(data) == EVENT_SIZE
    assert data[0] == 1
    assert EventRecord.unpack(data) == event


def test_event_too_deep_stack_rejected():
    event = EventRecord(EventType.CPU_SAMPLE, stack=tuple(range(1, MAX_STACK_DEPTH + 2)))
    with pytest.raises(ValueError):
        event.pack()


def test_event_unknown_type_kept_as_int():
    data = EventRecord(7, stack=(5,)).pack()
    decoded = EventRecord.unpack(data)
    assert decoded.event_type == 7
    assert not isinstance(decoded.event_type, EventType)


def test_find_code_segment_picks_first_rxp():
    maps = (
        "5555aaaa0000-5555aaab0000 r--p 00000000 08:01 1 /bin/app\n"
        "5555aaab0000-5555aaac0000 r-xp 00010000 08:01 1 /bin/app\n"
        "7fff00000000-7fff00010000 r-xp 00000000 08:01 2 /lib/libc.so\n"
    )
    assert find_code_segment(maps) == (0x5555AAAB0000, 0x5555AAAC0000)


def test_find_code_segment_none_without_executable():
    maps = "1000-2000 rw-p 00000000 00:00 0 [heap]\n"
    assert find_code_segment(maps) is None


def test_find_code_segment_only_scans_head():
    filler = "1000-2000 r--p 00000000 00:00 0 /some/long/path/name/here\n" * 60
    maps = filler + "3000-4000 r-xp 00000000 00:00 0 /bin/app\n"
    assert len(filler) > 2000
    assert find_code_segment(maps) is None


def _memory(words):
    return lambda addr: words.get(addr, 0)


def test_walk_frame_pointers_follows_chain():
    words = {
        0x2000: 0x3000, 0x2008: 0x401000,
        0x3000: 0x4000, 0x3008: 0x402000,
        0x4000: 0x0, 0x4008: 0x403000,
    }
    stack = walk_frame_pointers(_memory(words), 0x2000)
    assert stack == [0x401000, 0x402000, 0x403000]


def test_walk_frame_pointers_stops_on_bad_frames():
    assert walk_frame_pointers(_memory({}), 0x2001) == []
    assert walk_frame_pointers(_memory({0x10: 1, 0x18: 2}), 0x10) == []
    assert walk_frame_pointers(_memory({0x2000: 0x3000}), 0x2000) == []


def test_walk_frame_pointers_respects_max_depth():
    words = {}
    for i in range(10):
        fp = 0x2000 + i * 0x10
        words[fp] = fp + 0x10
        words[fp + 8] = 0x500000 + i
    assert len(walk_frame_pointers(_memory(words), 0x2000, max_depth=4)) == 4


def test_writer_initialises_header():
    buf = bytearray(buffer_size(4))
    RingBufferWriter(buf, pid=77, capacity=4)
    header = RingHeader.unpack(bytes(buf))
    assert header.magic == MAGIC
    assert header.version == tracebuf.VERSION
    assert header.capacity == 4
    assert header.pid == 77
    assert header.write_index == 0


def test_writer_rejects_small_buffer():
    with pytest.raises(ValueError):
        RingBufferWriter(bytearray(HEADER_SIZE), pid=1, capacity=2)


def test_writer_records_and_wraps():
    buf = bytearray(buffer_size(2))
    writer = RingBufferWriter(buf, pid=1, capacity=2)
    assert writer.record_alloc(0x10, 32, [7, 8]) == 0
    assert writer.record_dealloc(0x10, 32, [7, 8]) == 1
    assert writer.record(EventType.ALLOC, 0x20, 16, [9], timestamp=5) == 0
    assert writer.write_index == 3
    assert RingHeader.unpack(bytes(buf)).write_index == 3
    first = _slot(buf, 0)
    assert (first.event_type, first.ptr, first.size, first.timestamp, first.stack) == (
        EventType.ALLOC, 0x20, 16, 5, (9,)
    )
    second = _slot(buf, 1)
    assert second.event_type == EventType.DEALLOC
    assert second.stack == (7, 8)


def test_cpu_sample_prepends_rip():
    buf = bytearray(buffer_size(2))
    writer = RingBufferWriter(buf, pid=1, capacity=2)
    writer.record_cpu_sample(0xAAAA, [0xBBBB])
    writer.record_cpu_sample(0, [0xCCCC])
    with_rip = _slot(buf, 0)
    without_rip = _slot(buf, 1)
    assert with_rip.event_type == EventType.CPU_SAMPLE
    assert with_rip.stack == (0xAAAA, 0xBBBB)
    assert (with_rip.ptr, with_rip.size) == (0, 0)
    assert without_rip.stack == (0xCCCC,)


def test_default_timestamps_are_monotonic():
    buf = bytearray(buffer_size(2))
    writer = RingBufferWriter(buf, pid=1, capacity=2)
    writer.record_alloc(1, 1)
    writer.record_alloc(2, 1)
    assert 0 <= _slot(buf, 0).timestamp <= _slot(buf, 1).timestamp


def test_create_writes_shared_file(tmp_path):
    path = tmp_path / "trace"
    with RingBufferWriter.create(path, pid=55, capacity=3) as writer:
        writer.record_alloc(0x40, 128, [1, 2])
    data = path.read_bytes()
    assert len(data) == buffer_size(3)
    header = RingHeader.unpack(data)
    assert (header.pid, header.capacity, header.write_index) == (55, 3, 1)
    event = EventRecord.unpack(data[HEADER_SIZE:])
    assert (event.ptr, event.size, event.stack) == (0x40, 128, (1, 2))