from __future__ import annotations

import pytest

from icc_builders import build_profile, formula_payload, table_payload


@pytest.fixture
def linear_table_profile() -> bytes:
    ramp = [i * 257 for i in range(256)]
    return build_profile([(b"desc", b"desc" + b"\x00" * 8), (b"vcgt", table_payload(ramp, ramp, ramp))])


@pytest.fixture
def formula_profile() -> bytes:
    return build_profile([(b"vcgt", formula_payload(1.0, 1.0, 1.0))])
