from __future__ import annotations

import numpy as np
import pytest

from icc_builders import build_profile, formula_payload, table_payload
from icc_rw import (
    FormatError,
    ICCProfile,
    IccIOError,
    TagDirectoryEntry,
    TagNotFound,
    Truncated,
    UnsupportedFormat,
    VcgtFormula,
    VcgtTable,
    decode_vcgt,
    find_profile_start,
    iter_profile_starts,
    iter_tag_directory,
    locate_vcgt_tag,
    read_tag_directory,
)


def test_read_tag_directory_keeps_order() -> None:
    data = build_profile([(b"desc", b"x" * 12), (b"wtpt", b"y" * 20), (b"vcgt", formula_payload())])
    entries = read_tag_directory(data)
    assert [e.signature for e in entries] == [b"desc", b"wtpt", b"vcgt"]
    assert entries[0].offset == 128 + 4 + 3 * 12
    assert entries[1].offset == entries[0].offset + 12
    assert entries[2].size == 48


def test_tag_directory_entry_is_immutable() -> None:
    entry = TagDirectoryEntry(b"vcgt", 10, 20)
    with pytest.raises(AttributeError):
        entry.offset = 5  # type: ignore[misc]
    assert entry == TagDirectoryEntry(b"vcgt", 10, 20)


def test_locate_vcgt_tag(linear_table_profile: bytes) -> None:
    offset, size = locate_vcgt_tag(linear_table_profile)
    assert linear_table_profile[offset:offset + 4] == b"vcgt"
    assert size == 18 + 3 * 256 * 2


def test_locate_vcgt_tag_first_match_wins() -> None:
    first = formula_payload(1.0, 1.0, 1.0)
    second = formula_payload(2.0, 2.0, 2.0)
    data = build_profile([(b"vcgt", first), (b"vcgt", second)])
    offset, _ = locate_vcgt_tag(data)
    assert offset == 128 + 4 + 2 * 12


def test_locate_vcgt_tag_missing() -> None:
    data = build_profile([(b"desc", b"x" * 12)])
    with pytest.raises(TagNotFound):
        locate_vcgt_tag(data)
    assert issubclass(TagNotFound, FormatError)


def test_declared_tag_count_beyond_buffer_is_io_error() -> None:
    data = build_profile([(b"desc", b"x" * 12)], declared_count=1000)
    with pytest.raises(IccIOError):
        locate_vcgt_tag(data)
    with pytest.raises(IccIOError):
        read_tag_directory(data)


def test_buffer_shorter_than_header_is_io_error() -> None:
    with pytest.raises(IccIOError):
        locate_vcgt_tag(b"\x00" * 100)
    with pytest.raises(IccIOError):
        locate_vcgt_tag(b"\x00" * 130)


def test_decode_formula() -> None:
    data = build_profile([(b"vcgt", formula_payload(1.0, 2.2, 0.5))])
    offset, size = locate_vcgt_tag(data)
    curve, diagnostics = decode_vcgt(data, offset, size)
    assert isinstance(curve, VcgtFormula)
    assert diagnostics == []
    assert curve.red_gamma == 1.0
    assert curve.green_gamma == pytest.approx(2.2, abs=1 / 65536)
    assert curve.blue_gamma == 0.5
    assert curve.red_min == 0.0
    assert curve.red_max == 1.0


def test_decode_table_is_channel_major() -> None:
    red = [0, 100, 200, 300]
    green = [1000, 1100, 1200, 1300]
    blue = [60000, 61000, 62000, 65535]
    data = build_profile([(b"vcgt", table_payload(red, green, blue))])
    offset, size = locate_vcgt_tag(data)
    curve, _ = decode_vcgt(data, offset, size)
    assert isinstance(curve, VcgtTable)
    assert (curve.channels, curve.entry_count, curve.entry_size) == (3, 4, 2)
    np.testing.assert_array_equal(curve.red, red)
    np.testing.assert_array_equal(curve.green, green)
    np.testing.assert_array_equal(curve.blue, blue)


def test_decode_one_byte_table_reads_one_byte_per_sample() -> None:
    red = [0, 1, 2]
    green = [10, 11, 12]
    blue = [253, 254, 255]
    data = build_profile([(b"vcgt", table_payload(red, green, blue, entry_size=1))])
    offset, size = locate_vcgt_tag(data)
    curve, _ = decode_vcgt(data, offset, size)
    assert curve.entry_size == 1
    np.testing.assert_array_equal(curve.red, red)
    np.testing.assert_array_equal(curve.green, green)
    np.testing.assert_array_equal(curve.blue, blue)


@pytest.mark.parametrize("channels", [1, 4])
def test_decode_table_rejects_non_rgb(channels: int) -> None:
    data = build_profile([(b"vcgt", table_payload([0, 1], [0, 1], [0, 1], channels=channels))])
    offset, size = locate_vcgt_tag(data)
    with pytest.raises(UnsupportedFormat):
        decode_vcgt(data, offset, size)


def test_decode_table_rejects_entry_size() -> None:
    payload = bytearray(table_payload([0, 1], [0, 1], [0, 1]))
    payload[16:18] = b"\x00\x03"
    data = build_profile([(b"vcgt", bytes(payload))])
    offset, size = locate_vcgt_tag(data)
    with pytest.raises(UnsupportedFormat):
        decode_vcgt(data, offset, size)


def test_decode_rejects_unknown_curve_type() -> None:
    payload = bytearray(formula_payload())
    payload[8:12] = b"\x00\x00\x00\x02"
    data = build_profile([(b"vcgt", bytes(payload))])
    offset, size = locate_vcgt_tag(data)
    with pytest.raises(UnsupportedFormat):
        decode_vcgt(data, offset, size)


def test_decode_empty_table() -> None:
    data = build_profile([(b"vcgt", table_payload([], [], []))])
    offset, size = locate_vcgt_tag(data)
    with pytest.raises(FormatError):
        decode_vcgt(data, offset, size)


def test_signature_mismatch_warns_and_continues() -> None:
    data = build_profile([(b"vcgt", formula_payload(sig=b"curv"))])
    offset, size = locate_vcgt_tag(data)
    curve, diagnostics = decode_vcgt(data, offset, size)
    assert isinstance(curve, VcgtFormula)
    assert len(diagnostics) == 1
    assert diagnostics[0].severity == "warning"
    assert "curv" in diagnostics[0].message


def test_signature_mismatch_strict_fails() -> None:
    data = build_profile([(b"vcgt", formula_payload(sig=b"curv"))])
    offset, size = locate_vcgt_tag(data)
    with pytest.raises(FormatError):
        decode_vcgt(data, offset, size, strict=True)


def test_decode_never_reads_past_tag_size() -> None:
    data = build_profile([(b"vcgt", table_payload([1, 2, 3], [4, 5, 6], [7, 8, 9])), (b"desc", b"z" * 64)])
    offset, size = locate_vcgt_tag(data)
    with pytest.raises(Truncated):
        decode_vcgt(data, offset, size - 1)
    with pytest.raises(Truncated):
        decode_vcgt(data, offset, 14)


def test_decode_formula_truncated() -> None:
    data = build_profile([(b"vcgt", formula_payload()), (b"desc", b"z" * 64)])
    offset, size = locate_vcgt_tag(data)
    with pytest.raises(Truncated):
        decode_vcgt(data, offset, size - 4)


def test_decode_tag_past_end_of_file_is_io_error() -> None:
    data = build_profile([(b"vcgt", formula_payload())])
    offset, size = locate_vcgt_tag(data)
    with pytest.raises(IccIOError):
        decode_vcgt(data[:-8], offset, size)


def test_find_profile_start() -> None:
    profile = build_profile([(b"vcgt", formula_payload())])
    assert find_profile_start(profile) == 0
    embedded = b"aacs" + b"\x00" * 46 + profile
    assert find_profile_start(embedded) == 50
    assert find_profile_start(b"no profile signature here") is None


def test_find_profile_start_skips_signature_too_early() -> None:
    assert find_profile_start(b"acsp" + b"\x00" * 64) is None


def test_icc_profile_from_file(tmp_path, linear_table_profile: bytes) -> None:
    path = tmp_path / "display.icc"
    path.write_bytes(linear_table_profile)
    icc = ICCProfile(str(path))
    assert set(icc.tags) == {"desc", "vcgt"}
    curve, diagnostics = icc.read_vcgt()
    assert curve.entry_count == 256
    assert diagnostics == []


def test_icc_profile_missing_file(tmp_path) -> None:
    with pytest.raises(IccIOError):
        ICCProfile(str(tmp_path / "missing.icc"))


def test_icc_profile_without_vcgt() -> None:
    icc = ICCProfile.from_bytes(build_profile([(b"desc", b"x" * 12)]))
    with pytest.raises(TagNotFound):
        icc.read_vcgt()


def test_vcgt_formula_is_immutable() -> None:
    curve = VcgtFormula(1.0, 0.0, 1.0, 2.0, 0.0, 1.0, 0.5, 0.0, 1.0)
    assert curve.gammas == (1.0, 2.0, 0.5)
    with pytest.raises(AttributeError):
        curve.red_gamma = 3.0  # type: ignore[misc]
    assert curve.red_gamma == 1.0


def test_locate_vcgt_tag_ignores_truncated_tail_of_directory() -> None:
    data = build_profile([(b"vcgt", formula_payload())], declared_count=1000)
    offset, size = locate_vcgt_tag(data)
    assert data[offset:offset + 4] == b"vcgt"
    assert size == 48


def test_iter_tag_directory_fails_only_when_reaching_missing_entry() -> None:
    data = build_profile([(b"desc", b"x" * 12), (b"vcgt", formula_payload())], declared_count=1000)
    entries = iter_tag_directory(data)
    assert next(entries).signature == b"desc"
    assert next(entries).signature == b"vcgt"
    # remaining entries overlap the payloads until the buffer runs out
    with pytest.raises(IccIOError):
        list(entries)


def test_iter_profile_starts_finds_every_embedded_profile() -> None:
    profile = build_profile([(b"vcgt", formula_payload())])
    blob = b"\x00" * 10 + profile + b"\x00" * 6 + profile
    assert list(iter_profile_starts(blob)) == [10, 10 + len(profile) + 6]
    assert list(iter_profile_starts(b"\x00" * 200)) == []
