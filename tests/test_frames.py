from watermeter.core.frames import FrameDecoder

STREAM = "garbage]x[1,2,3][4,5,6]\r\n[7,8\r\n,9]tail[10,11][12"


def _decode_chunks(chunks):
    decoder = FrameDecoder()
    frames = []
    for chunk in chunks:
        frames.extend(decoder.feed(chunk))
    return frames


def test_single_frame_is_extracted():
    decoder = FrameDecoder()
    assert list(decoder.feed("[a,b,c]")) == ["a,b,c"]
    assert decoder.pending == ""


def test_back_to_back_frames_in_one_chunk():
    assert _decode_chunks(["[a][b][c]"]) == ["a", "b", "c"]


def test_incomplete_frame_waits_for_more_data():
    decoder = FrameDecoder()
    assert list(decoder.feed("[1,2")) == []
    assert decoder.pending == "[1,2"
    assert list(decoder.feed(",3]")) == ["1,2,3"]


def test_data_without_start_marker_is_discarded():
    decoder = FrameDecoder()
    assert list(decoder.feed("1,2,3]")) == []
    assert decoder.pending == ""
    assert list(decoder.feed("[4]")) == ["4"]


def test_prefix_before_start_marker_is_dropped():
    assert _decode_chunks(["xx,yy[4,5]"]) == ["4,5"]


def test_truncated_frame_does_not_swallow_next_frame():
    assert _decode_chunks(["[1,2[3,4]"]) == ["3,4"]
    assert _decode_chunks(["[1,2", "[3,4]"]) == ["3,4"]


def test_line_endings_are_ignored():
    assert _decode_chunks(["[a\r\n,b]\r\n", "[c]\n"]) == ["a,b", "c"]


def test_bytes_are_decoded():
    decoder = FrameDecoder()
    assert list(decoder.feed(b"[1,2]")) == ["1,2"]


def test_chunk_boundaries_do_not_change_frames():
    expected = _decode_chunks([STREAM])
    assert expected == ["1,2,3", "4,5,6", "7,8,9", "10,11"]

    assert _decode_chunks(list(STREAM)) == expected
    for split in range(len(STREAM) + 1):
        assert _decode_chunks([STREAM[:split], STREAM[split:]]) == expected
    for size in (2, 3, 5, 7):
        chunks = [STREAM[i:i + size] for i in range(0, len(STREAM), size)]
        assert _decode_chunks(chunks) == expected


def test_frames_generator_is_restartable_and_never_repeats():
    decoder = FrameDecoder()
    first = decoder.feed("[a][b]")
    assert next(first) == "a"
    assert list(decoder.frames()) == ["b"]
    assert list(first) == []
    assert list(decoder.frames()) == []


def test_reset_clears_buffer():
    decoder = FrameDecoder()
    list(decoder.feed("[partial"))
    decoder.reset()
    assert decoder.pending == ""
    assert list(decoder.feed("data]")) == []


def test_multibyte_characters_survive_any_byte_split():
    raw = "[a,é][ü,1]".encode("utf-8")

    assert _decode_chunks([raw]) == ["a,é", "ü,1"]
    assert _decode_chunks([raw[i:i + 1] for i in range(len(raw))]) == ["a,é", "ü,1"]
    for split in range(len(raw) + 1):
        assert _decode_chunks([raw[:split], raw[split:]]) == ["a,é", "ü,1"]


def test_reset_drops_partial_multibyte_sequence():
    decoder = FrameDecoder()
    list(decoder.feed(b"[a\xc3"))
    decoder.reset()

    decoder.feed(b"\xa9")
    assert decoder.pending == "\ufffd"
